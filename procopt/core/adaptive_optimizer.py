"""Adaptive Optimizer - Host-facing facade over the optimizer subsystems

Integration layer that:
- Wires metrics, cache, scheduler, pools, forecaster and controller together
- Runs every periodic activity on its own background worker
- Exposes the cache, task, resource and forecast operations to the host
- Produces read-only optimization reports and suggestions
"""

import logging
import threading
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .. import __version__
from ..optimizer_core.config import OptimizerConfig
from ..optimizer_core.events import (
    EventBus, FORECASTS_GENERATED, METRICS_COLLECTED, TASK_COMPLETED
)
from ..optimizer_core.exceptions import OptimizerError
from ..optimizer_core.history import OptimizationHistory
from ..optimizer_core.metrics import MetricsCollector, MetricSource
from ..optimizer_core.models import (
    CachePriority, Forecast, MetricSample, TaskCompletion, TaskPriority
)
from ..optimizer_core.periodic import PeriodicWorker
from ..optimizer_engine.caching.tiered_cache import TieredCache
from ..optimizer_engine.forecasting.load_forecaster import LoadForecaster
from ..optimizer_engine.optimization.controller import OptimizationController
from ..optimizer_engine.pools.resource_pools import PoolHandle, ResourcePoolManager
from ..optimizer_engine.scheduling.circuit_breaker import CircuitBreaker
from ..optimizer_engine.scheduling.scheduler import TaskHandler, TaskScheduler

logger = logging.getLogger(__name__)

CPU_SUGGESTION_PERCENT = 70.0
HIT_RATE_SUGGESTION = 0.7
UTILIZATION_SUGGESTION = 0.8


class OptimizerState(Enum):
    """Optimizer lifecycle states"""
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class AdaptiveOptimizer:
    """Self-tuning resource manager in front of a task-processing pipeline"""

    def __init__(self,
                 config: Optional[OptimizerConfig] = None,
                 metric_sources: Optional[Dict[str, MetricSource]] = None,
                 history: Optional[OptimizationHistory] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or OptimizerConfig()
        self.config.validate()
        self.clock = clock
        self.state = OptimizerState.CREATED
        self.started_at: Optional[float] = None

        self.event_bus = EventBus()
        self.metrics = MetricsCollector(
            window=self.config.metrics_window,
            sources=metric_sources,
            event_bus=self.event_bus,
            clock=clock
        )
        self.cache = TieredCache(self.config.cache_levels, clock=clock, event_bus=self.event_bus)
        self.pools = ResourcePoolManager(self.config.pool_definitions, event_bus=self.event_bus, clock=clock)
        self.forecaster = LoadForecaster(
            horizons=self.config.forecast_horizons,
            history_size=self.config.pattern_history_size,
            event_bus=self.event_bus,
            clock=clock
        )

        if history is None and self.config.history_db_url:
            history = OptimizationHistory(self.config.history_db_url, clock=clock)
        self.history = history

        self.scheduler = TaskScheduler(
            metrics=self.metrics,
            max_capacity=self.config.max_capacity,
            worker_threads=self.config.worker_threads,
            kind_priorities=self.config.kind_priorities,
            admission_cpu_percent=self.config.admission_cpu_percent,
            admission_memory_percent=self.config.admission_memory_percent,
            overload_ratio=self.config.overload_ratio,
            event_bus=self.event_bus,
            circuit_breaker=CircuitBreaker(clock=clock),
            on_overload=self._on_overload,
            clock=clock
        )
        self.controller = OptimizationController(
            cache=self.cache,
            scheduler=self.scheduler,
            pools=self.pools,
            thresholds=self.config.thresholds,
            event_bus=self.event_bus,
            history=self.history
        )

        # task_id -> (cache key, cache priority) for results to cache on success
        self._result_keys: Dict[str, Tuple[str, CachePriority]] = {}
        self._result_lock = threading.Lock()

        self.event_bus.subscribe(METRICS_COLLECTED, self._on_metrics)
        self.event_bus.subscribe(FORECASTS_GENERATED, self._on_forecasts)
        self.event_bus.subscribe(TASK_COMPLETED, self._cache_task_result)

        self.workers = self._create_workers()

        logger.info("AdaptiveOptimizer initialized")

    def _create_workers(self) -> List[PeriodicWorker]:
        c = self.config
        return [
            PeriodicWorker("metrics", c.sample_interval_ms / 1000.0, self.collect_metrics),
            PeriodicWorker("cache-sweep", c.cache_sweep_interval_ms / 1000.0, self.cache.sweep),
            PeriodicWorker("dispatch", c.dispatch_interval_ms / 1000.0, self.scheduler.dispatch_once),
            PeriodicWorker("pool-rebalance", c.rebalance_interval_ms / 1000.0, self.pools.rebalance),
            PeriodicWorker("load-pattern", c.pattern_capture_interval_ms / 1000.0, self.capture_load_pattern),
            PeriodicWorker("forecast", c.forecast_interval_ms / 1000.0, self.forecaster.generate_forecasts),
        ]

    # ===============================================================================
    # LIFECYCLE
    # ===============================================================================

    def start(self):
        """Start every periodic activity"""
        if self.state == OptimizerState.RUNNING:
            return
        if self.state == OptimizerState.STOPPED:
            raise OptimizerError("A stopped optimizer cannot be restarted; create a new instance")

        for worker in self.workers:
            worker.start()

        self.started_at = self.clock()
        self.state = OptimizerState.RUNNING
        logger.info("AdaptiveOptimizer started")

    def stop(self, wait: bool = True):
        """Stop periodic activities and the worker pool; in-flight tasks finish when wait is True"""
        if self.state == OptimizerState.STOPPED:
            return

        for worker in self.workers:
            worker.stop()
        self.scheduler.shutdown(wait=wait)

        self.state = OptimizerState.STOPPED
        logger.info("AdaptiveOptimizer stopped")

    def close(self):
        """Stop and release the history database"""
        self.stop()
        if self.history:
            self.history.close()

    def __enter__(self) -> 'AdaptiveOptimizer':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # ===============================================================================
    # EVENT WIRING
    # ===============================================================================

    def _on_metrics(self, sample: MetricSample):
        if self.history:
            self.history.record_sample(sample)
        self.controller.evaluate(sample)

    def _on_forecasts(self, forecasts: List[Forecast]):
        self.controller.apply_forecasts(forecasts)

    def _on_overload(self):
        self.controller.shed_load()

    def _cache_task_result(self, completion: TaskCompletion):
        with self._result_lock:
            target = self._result_keys.pop(completion.task_id, None)
        if target and completion.success:
            key, priority = target
            self.cache.put(key, completion.result, priority)

    # ===============================================================================
    # HOST OPERATIONS
    # ===============================================================================

    def collect_metrics(self) -> MetricSample:
        """Take one metric sample; the controller evaluates its rules against it"""
        return self.metrics.sample()

    def cache_get(self, key: str) -> Tuple[Any, bool]:
        return self.cache.get(key)

    def cache_put(self, key: str, value: Any, priority: CachePriority = CachePriority.MEDIUM) -> bool:
        return self.cache.put(key, value, priority)

    def enqueue_task(self,
                     handler: TaskHandler,
                     payload: Any = None,
                     priority: Optional[Union[TaskPriority, str]] = None,
                     kind: Optional[str] = None,
                     cpu_intensive: bool = False,
                     cache_key: Optional[str] = None,
                     cache_priority: CachePriority = CachePriority.MEDIUM) -> str:
        """Queue a task; with cache_key a successful result is stored in the cache"""
        task_id = f"task_{uuid.uuid4().hex[:12]}"
        if cache_key is not None:
            with self._result_lock:
                self._result_keys[task_id] = (cache_key, cache_priority)

        return self.scheduler.enqueue(
            handler,
            payload=payload,
            priority=priority,
            kind=kind,
            cpu_intensive=cpu_intensive,
            task_id=task_id
        )

    def on_task_completed(self, callback: Callable[[TaskCompletion], Any]):
        """Register a callback receiving every TaskCompletion; its errors are logged and dropped"""
        self.event_bus.subscribe(TASK_COMPLETED, callback)

    def acquire_resource(self, pool_name: str, timeout: Optional[float] = None) -> Optional[PoolHandle]:
        return self.pools.acquire(pool_name, timeout=timeout)

    def release_resource(self, pool_name: str, handle: PoolHandle) -> bool:
        return self.pools.release(pool_name, handle)

    def get_forecast(self, label: str) -> Optional[Forecast]:
        return self.forecaster.get_forecast(label)

    def capture_load_pattern(self):
        """Record the current scheduler load into the forecaster's hour bucket"""
        latest = self.metrics.latest()
        self.forecaster.record(
            self.scheduler.current_load,
            cpu_percent=latest.cpu_percent if latest else 0.0,
            memory_percent=latest.memory_percent if latest else 0.0
        )

    # ===============================================================================
    # REPORTING
    # ===============================================================================

    def get_optimization_report(self) -> Dict[str, Any]:
        """Read-only snapshot of every subsystem"""
        averages = self.metrics.averages()
        latest = self.metrics.latest()
        current_load = self.scheduler.current_load

        return {
            'optimizer': {
                'name': 'procopt',
                'version': __version__,
                'status': self.state.value,
                'uptime_seconds': (self.clock() - self.started_at) if self.started_at else 0.0,
            },
            'performance': {
                'average_cpu_percent': averages['cpu_percent'],
                'average_memory_percent': averages['memory_percent'],
                'average_response_time_ms': averages['response_time_ms'],
                'average_throughput_per_sec': averages['throughput_per_sec'],
                'average_error_rate_percent': averages['error_rate_percent'],
                'samples': self.metrics.samples_taken,
                'latest': latest.to_dict() if latest else None,
                'trends': {name: trend.to_dict() for name, trend in self.metrics.trends().items()},
            },
            'cache': self.cache.get_stats(),
            'queues': {
                'depths': self.scheduler.queue_depths(),
                'in_flight': len(self.scheduler.in_flight),
                'current_load': current_load,
                'max_capacity': self.scheduler.max_capacity,
                'utilization': current_load / self.scheduler.max_capacity,
                'statistics': self.scheduler.scheduling_stats.copy(),
            },
            'pools': {
                'efficiency': self.pools.efficiency,
                'pools': self.pools.snapshot(),
            },
            'forecast': self.forecaster.summary(),
            'controller': self.controller.statistics(),
            'timestamp': datetime.fromtimestamp(self.clock()).isoformat(),
        }

    def get_optimization_suggestions(self) -> List[Dict[str, str]]:
        report = self.get_optimization_report()
        suggestions = []

        if report['performance']['average_cpu_percent'] > CPU_SUGGESTION_PERCENT:
            suggestions.append({
                'type': 'cpu',
                'priority': 'high',
                'suggestion': 'Enable aggressive CPU optimizations',
                'impact': 'performance',
            })

        if report['cache']['hit_rate'] < HIT_RATE_SUGGESTION:
            suggestions.append({
                'type': 'cache',
                'priority': 'medium',
                'suggestion': 'Improve the caching strategy',
                'impact': 'latency',
            })

        if report['queues']['utilization'] > UTILIZATION_SUGGESTION:
            suggestions.append({
                'type': 'scaling',
                'priority': 'high',
                'suggestion': 'Increase capacity or reduce load',
                'impact': 'availability',
            })

        return suggestions

    def get_processing_stats(self) -> Dict[str, Any]:
        """Task, cache and optimization totals, plus persisted history when enabled"""
        return {
            'tasks': self.scheduler.statistics(),
            'cache': self.cache.stats.to_dict(),
            'optimizations': self.controller.optimization_stats.copy(),
            'history': self.history.statistics() if self.history else None,
        }


def create_adaptive_optimizer(config: Optional[OptimizerConfig] = None, **kwargs) -> AdaptiveOptimizer:
    """Factory function to create an adaptive optimizer"""
    return AdaptiveOptimizer(config, **kwargs)
