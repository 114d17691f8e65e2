"""ProcOpt Engine - Cache, scheduler, pools, forecaster and optimization controller"""

from .caching import TieredCache
from .forecasting import LoadForecaster
from .optimization import OptimizationController
from .pools import PoolHandle, ResourcePoolManager
from .scheduling import CircuitBreaker, TaskScheduler

__all__ = [
    "TieredCache", "LoadForecaster", "OptimizationController",
    "PoolHandle", "ResourcePoolManager", "CircuitBreaker", "TaskScheduler",
]
