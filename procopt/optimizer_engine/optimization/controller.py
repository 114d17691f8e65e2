"""Optimization Controller - Condition/action rules applied after every metric sample

Adaptive control system that:
- Evaluates a tagged rule set (cpu, memory, latency, error rate) on each sample
- Applies corrective actions to the cache, scheduler and resource pools
- Sheds load on scheduler overload and pre-scales pools ahead of forecast peaks
- Keeps a bounded history of applied actions and publishes each one
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from ...optimizer_core.config import ControllerThresholds
from ...optimizer_core.events import EventBus, OPTIMIZATION_APPLIED
from ...optimizer_core.history import OptimizationHistory
from ...optimizer_core.models import Forecast, MetricSample, OptimizationEvent, OptimizationType
from ..caching.tiered_cache import TieredCache
from ..pools.resource_pools import ResourcePoolManager
from ..scheduling.scheduler import TaskScheduler

logger = logging.getLogger(__name__)

CONNECTIONS_POOL = "connections"


@dataclass
class OptimizationRule:
    """Tagged trigger: when condition holds the action runs, otherwise recovery (if any)"""
    name: str
    optimization_type: OptimizationType
    condition: Callable[[MetricSample], bool]
    action: Callable[[MetricSample], Dict[str, Any]]
    describe: Callable[[MetricSample], str]
    impact: str
    recovery: Optional[Callable[[MetricSample], None]] = None


class OptimizationController:
    """Applies corrective actions to the optimizer subsystems"""

    def __init__(self,
                 cache: TieredCache,
                 scheduler: TaskScheduler,
                 pools: ResourcePoolManager,
                 thresholds: Optional[ControllerThresholds] = None,
                 event_bus: Optional[EventBus] = None,
                 history: Optional[OptimizationHistory] = None,
                 history_size: int = 100):
        self.cache = cache
        self.scheduler = scheduler
        self.pools = pools
        self.thresholds = thresholds or ControllerThresholds()
        self.event_bus = event_bus
        self.history = history

        self.events: Deque[OptimizationEvent] = deque(maxlen=history_size)
        self.rules = self._create_default_rules()
        self._lock = threading.RLock()
        self._breaker_forced = False

        self.optimization_stats = {
            'evaluations': 0,
            'total_optimizations': 0,
            'successful_optimizations': 0,
            'failed_optimizations': 0,
            'rule_errors': 0,
        }
        self._by_type: Counter = Counter()

        logger.info(f"OptimizationController initialized with rules: {', '.join(r.name for r in self.rules)}")

    def _create_default_rules(self) -> List[OptimizationRule]:
        t = self.thresholds
        return [
            OptimizationRule(
                name="cpu_high",
                optimization_type=OptimizationType.CPU,
                condition=lambda s: s.cpu_percent > t.cpu_high_percent,
                action=self._optimize_for_cpu,
                describe=lambda s: f"CPU {s.cpu_percent:.1f}% > {t.cpu_high_percent}%",
                impact="smaller cache, lightweight tasks first",
                recovery=lambda s: self.scheduler.set_lightweight_first(False)
            ),
            OptimizationRule(
                name="memory_high",
                optimization_type=OptimizationType.MEMORY,
                condition=lambda s: s.memory_percent > t.memory_high_percent,
                action=self._optimize_for_memory,
                describe=lambda s: f"memory {s.memory_percent:.1f}% > {t.memory_high_percent}%",
                impact="evicted cache levels 2-3, reclaimed pool handles"
            ),
            OptimizationRule(
                name="latency_high",
                optimization_type=OptimizationType.LATENCY,
                condition=lambda s: s.response_time_ms > t.latency_high_ms,
                action=self._optimize_for_latency,
                describe=lambda s: f"response time {s.response_time_ms:.1f}ms > {t.latency_high_ms}ms",
                impact="larger cache, more connections"
            ),
            OptimizationRule(
                name="error_rate_high",
                optimization_type=OptimizationType.RELIABILITY,
                condition=lambda s: s.error_rate_percent > t.error_rate_high_percent,
                action=self._optimize_for_reliability,
                describe=lambda s: f"error rate {s.error_rate_percent:.1f}% > {t.error_rate_high_percent}%",
                impact="redundant execution, circuit breaker open",
                recovery=self._recover_reliability
            ),
        ]

    # ===============================================================================
    # RULE EVALUATION
    # ===============================================================================

    def evaluate(self, sample: MetricSample) -> List[OptimizationEvent]:
        """Run every rule against the sample; one failing rule never blocks the rest"""
        applied = []
        self.optimization_stats['evaluations'] += 1

        for rule in self.rules:
            try:
                triggered = rule.condition(sample)
            except Exception as e:
                self.optimization_stats['rule_errors'] += 1
                logger.error(f"Condition of rule '{rule.name}' failed: {e}")
                continue

            if triggered:
                applied.append(self._apply(
                    rule.optimization_type,
                    rule.describe(sample),
                    rule.impact,
                    lambda rule=rule: rule.action(sample)
                ))
            elif rule.recovery:
                try:
                    rule.recovery(sample)
                except Exception as e:
                    self.optimization_stats['rule_errors'] += 1
                    logger.error(f"Recovery of rule '{rule.name}' failed: {e}")

        return applied

    def _apply(self, optimization_type: OptimizationType, reason: str, impact: str,
               action: Callable[[], Dict[str, Any]]) -> OptimizationEvent:
        try:
            details = action() or {}
            event = OptimizationEvent(optimization_type, reason, impact, success=True, details=details)
            logger.info(f"Applied {optimization_type.value} optimization: {reason}")
        except Exception as e:
            event = OptimizationEvent(optimization_type, reason, impact, success=False, error=str(e))
            logger.error(f"{optimization_type.value} optimization failed: {e}")

        self._record(event)
        return event

    def _record(self, event: OptimizationEvent):
        with self._lock:
            self.events.append(event)
            self.optimization_stats['total_optimizations'] += 1
            key = 'successful_optimizations' if event.success else 'failed_optimizations'
            self.optimization_stats[key] += 1
            self._by_type[event.optimization_type.value] += 1

        if self.history:
            self.history.record_event(event)
        if self.event_bus:
            self.event_bus.emit(OPTIMIZATION_APPLIED, event)

    # ===============================================================================
    # ACTIONS
    # ===============================================================================

    def _optimize_for_cpu(self, sample: MetricSample) -> Dict[str, Any]:
        scale = self.cache.adjust_aggressiveness(self.thresholds.cache_shrink_factor)
        self.scheduler.set_lightweight_first(True)
        return {'cache_scale': scale, 'lightweight_first': True}

    def _optimize_for_memory(self, sample: MetricSample) -> Dict[str, Any]:
        evicted = {
            'level3': self.cache.force_eviction(3),
            'level2': self.cache.force_eviction(2),
        }
        reclaimed = self.pools.reclaim(self.thresholds.reclaim_fraction)
        return {'evicted': evicted, 'reclaimed': reclaimed}

    def _optimize_for_latency(self, sample: MetricSample) -> Dict[str, Any]:
        scale = self.cache.adjust_aggressiveness(self.thresholds.cache_grow_factor)
        details: Dict[str, Any] = {'cache_scale': scale}

        if CONNECTIONS_POOL in self.pools.pools:
            details['connections_capacity'] = self.pools.expand(
                CONNECTIONS_POOL, self.thresholds.connection_pool_increment
            )
        return details

    def _optimize_for_reliability(self, sample: MetricSample) -> Dict[str, Any]:
        self.scheduler.set_redundancy(True)

        # Open once per episode; the breaker half-opens on its own after the recovery timeout
        if not self._breaker_forced:
            self.scheduler.circuit_breaker.force_open(f"error rate {sample.error_rate_percent:.1f}%")
            self._breaker_forced = True

        return {'redundancy': True, 'circuit_breaker': self.scheduler.circuit_breaker.state.value}

    def _recover_reliability(self, sample: MetricSample):
        self.scheduler.set_redundancy(False)
        self._breaker_forced = False

    def shed_load(self) -> OptimizationEvent:
        """Scheduler overload response"""
        def action():
            scale = self.cache.adjust_aggressiveness(self.thresholds.load_shed_cache_factor)
            self.scheduler.set_lightweight_first(True)
            return {
                'cache_scale': scale,
                'current_load': self.scheduler.current_load,
                'max_capacity': self.scheduler.max_capacity,
            }

        return self._apply(
            OptimizationType.LOAD_SHEDDING,
            f"scheduler load above {self.scheduler.overload_ratio:.0%} of capacity",
            "smaller cache, lightweight tasks first",
            action
        )

    def apply_forecasts(self, forecasts: Iterable[Forecast]) -> Optional[OptimizationEvent]:
        """Pre-expand every pool when a confident forecast approaches capacity"""
        t = self.thresholds
        threshold = t.forecast_peak_ratio * self.scheduler.max_capacity

        peaks = [
            f for f in forecasts
            if f.confidence >= t.forecast_min_confidence and f.expected_load >= threshold
        ]
        if not peaks:
            return None

        peak = max(peaks, key=lambda f: f.expected_load)
        return self._apply(
            OptimizationType.PREDICTIVE_SCALING,
            f"forecast {peak.horizon_label} load {peak.expected_load:.1f} "
            f"(confidence {peak.confidence:.2f}) >= {threshold:.1f}",
            f"pools expanded by {t.forecast_expand_ratio:.0%}",
            lambda: {'capacities': self.pools.expand_all(t.forecast_expand_ratio),
                     'horizon': peak.horizon_label}
        )

    # ===============================================================================
    # REPORTING
    # ===============================================================================

    def recent_events(self, limit: int = 10) -> List[OptimizationEvent]:
        with self._lock:
            return list(self.events)[-limit:]

    def statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'optimization_stats': self.optimization_stats.copy(),
                'by_type': dict(self._by_type),
                'rules': [rule.name for rule in self.rules],
                'modes': {
                    'lightweight_first': self.scheduler.lightweight_first,
                    'redundancy': self.scheduler.redundancy_enabled,
                    'circuit_breaker': self.scheduler.circuit_breaker.state.value,
                    'cache_scale': self.cache.aggressiveness,
                },
                'recent_events': [event.to_dict() for event in list(self.events)[-10:]],
            }
