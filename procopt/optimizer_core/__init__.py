"""ProcOpt Core - Models, configuration, metrics and shared infrastructure"""

from .config import (
    CacheLevelConfig, ConfigManager, ControllerThresholds, OptimizerConfig,
    PoolDefinition, load_config
)
from .events import EventBus
from .exceptions import (
    CircuitOpenError, ConfigurationError, HistoryError, OptimizerError,
    ResourceError, UnknownPoolError
)
from .history import OptimizationHistory
from .metrics import MetricsCollector
from .models import (
    CachePriority, EvictionPolicy, Forecast, MetricSample, OptimizationEvent,
    OptimizationType, TaskCompletion, TaskPriority, Trend, TrendDirection
)
from .periodic import PeriodicWorker

__all__ = [
    "CacheLevelConfig", "ConfigManager", "ControllerThresholds", "OptimizerConfig",
    "PoolDefinition", "load_config",
    "EventBus",
    "CircuitOpenError", "ConfigurationError", "HistoryError", "OptimizerError",
    "ResourceError", "UnknownPoolError",
    "OptimizationHistory", "MetricsCollector",
    "CachePriority", "EvictionPolicy", "Forecast", "MetricSample", "OptimizationEvent",
    "OptimizationType", "TaskCompletion", "TaskPriority", "Trend", "TrendDirection",
    "PeriodicWorker",
]
