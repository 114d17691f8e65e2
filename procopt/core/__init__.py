"""ProcOpt Integration - Host-facing optimizer facade"""

from .adaptive_optimizer import AdaptiveOptimizer, OptimizerState, create_adaptive_optimizer

__all__ = ["AdaptiveOptimizer", "OptimizerState", "create_adaptive_optimizer"]
