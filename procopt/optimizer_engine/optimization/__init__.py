"""Optimization Control - Rule-driven corrective actions"""

from .controller import OptimizationController, OptimizationRule

__all__ = [
    'OptimizationController',
    'OptimizationRule'
]
