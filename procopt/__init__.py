__version__ = "1.0.0"

from .optimizer_core.config import OptimizerConfig, ConfigManager, load_config
from .optimizer_core.exceptions import OptimizerError, ConfigurationError, UnknownPoolError
from .optimizer_core.models import CachePriority, TaskPriority, TaskCompletion, Forecast, MetricSample
from .core.adaptive_optimizer import AdaptiveOptimizer, create_adaptive_optimizer

__all__ = [
    "OptimizerConfig", "ConfigManager", "load_config",
    "OptimizerError", "ConfigurationError", "UnknownPoolError",
    "CachePriority", "TaskPriority", "TaskCompletion", "Forecast", "MetricSample",
    "AdaptiveOptimizer", "create_adaptive_optimizer",
]
