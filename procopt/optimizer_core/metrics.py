"""Metrics Collector - System and task metrics sampling with trend analysis"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

import psutil

from .events import EventBus, METRICS_COLLECTED
from .models import METRIC_NAMES, MetricSample, Trend, TrendDirection

logger = logging.getLogger(__name__)

MetricSource = Callable[[], float]

TREND_THRESHOLD = 0.1


def least_squares_slope(values: List[float]) -> float:
    """Slope of the least-squares line through (index, value) points"""
    n = len(values)
    if n < 2:
        return 0.0

    mean_x = (n - 1) / 2.0
    mean_y = sum(values) / n

    numerator = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    return numerator / denominator if denominator else 0.0


def _psutil_cpu_percent() -> float:
    return psutil.cpu_percent(interval=None)


def _psutil_memory_percent() -> float:
    return psutil.virtual_memory().percent


class MetricsCollector:
    """Samples CPU, memory and task-level metrics into fixed-size windows

    CPU and memory come from psutil. Response time, throughput and error rate
    are derived from task results reported through ``record_task_result``.
    Any source can be replaced with a callable returning a float; a source that
    raises keeps its last known value so sampling itself never fails.
    """

    def __init__(self,
                 window: int = 60,
                 sources: Optional[Dict[str, MetricSource]] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time,
                 completion_window_seconds: float = 60.0):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.window = window
        self.event_bus = event_bus
        self.clock = clock
        self.completion_window_seconds = completion_window_seconds

        self._lock = threading.RLock()
        self._buffers: Dict[str, Deque[float]] = {name: deque(maxlen=window) for name in METRIC_NAMES}
        self._timestamps: Deque[float] = deque(maxlen=window)
        self._last_values: Dict[str, float] = {name: 0.0 for name in METRIC_NAMES}
        self._latest: Optional[MetricSample] = None

        # (timestamp, success, duration_ms)
        self._completions: Deque[Tuple[float, bool, float]] = deque(maxlen=10000)
        self._started_at = clock()

        self.samples_taken = 0
        self.source_failures = 0

        self._sources: Dict[str, MetricSource] = {
            'cpu_percent': _psutil_cpu_percent,
            'memory_percent': _psutil_memory_percent,
            'response_time_ms': self._window_response_time,
            'throughput_per_sec': self._window_throughput,
            'error_rate_percent': self._window_error_rate,
        }
        for name, source in (sources or {}).items():
            self.set_source(name, source)

    def set_source(self, metric_name: str, source: MetricSource):
        if metric_name not in METRIC_NAMES:
            raise KeyError(f"Unknown metric: {metric_name}")
        with self._lock:
            self._sources[metric_name] = source

    # ===============================================================================
    # TASK RESULT WINDOW
    # ===============================================================================

    def record_task_result(self, success: bool, duration_ms: float):
        """Record one finished task for the response time, throughput and error rate metrics"""
        with self._lock:
            self._completions.append((self.clock(), success, duration_ms))

    def _recent_completions(self) -> List[Tuple[float, bool, float]]:
        cutoff = self.clock() - self.completion_window_seconds
        with self._lock:
            while self._completions and self._completions[0][0] < cutoff:
                self._completions.popleft()
            return list(self._completions)

    def _window_response_time(self) -> float:
        completions = self._recent_completions()
        if not completions:
            return 0.0
        return sum(c[2] for c in completions) / len(completions)

    def _window_throughput(self) -> float:
        completions = self._recent_completions()
        if not completions:
            return 0.0
        span = min(self.completion_window_seconds, self.clock() - self._started_at)
        return len(completions) / max(span, 1e-3)

    def _window_error_rate(self) -> float:
        completions = self._recent_completions()
        if not completions:
            return 0.0
        failures = sum(1 for c in completions if not c[1])
        return failures / len(completions) * 100.0

    # ===============================================================================
    # SAMPLING
    # ===============================================================================

    def _read_source(self, metric_name: str) -> float:
        source = self._sources[metric_name]
        try:
            value = float(source())
        except Exception as e:
            self.source_failures += 1
            fallback = self._last_values[metric_name]
            self.logger.warning(f"Metric source '{metric_name}' failed, using last known value {fallback}: {e}")
            return fallback

        self._last_values[metric_name] = value
        return value

    def sample(self) -> MetricSample:
        """Read every source once, append to the windows and publish the sample"""
        with self._lock:
            values = {name: self._read_source(name) for name in METRIC_NAMES}
            sample = MetricSample(timestamp=self.clock(), **values)

            for name in METRIC_NAMES:
                self._buffers[name].append(values[name])
            self._timestamps.append(sample.timestamp)
            self._latest = sample
            self.samples_taken += 1

        self.logger.debug(
            f"Sample: cpu={sample.cpu_percent:.1f}% mem={sample.memory_percent:.1f}% "
            f"rt={sample.response_time_ms:.1f}ms err={sample.error_rate_percent:.1f}%"
        )

        if self.event_bus:
            self.event_bus.emit(METRICS_COLLECTED, sample)

        return sample

    # ===============================================================================
    # ANALYSIS
    # ===============================================================================

    def trend(self, metric_name: str) -> Trend:
        """Least-squares trend of a metric window; unknown names raise KeyError"""
        values = self.series(metric_name)
        slope = least_squares_slope(values)

        if slope > TREND_THRESHOLD:
            direction = TrendDirection.INCREASING
        elif slope < -TREND_THRESHOLD:
            direction = TrendDirection.DECREASING
        else:
            direction = TrendDirection.STABLE

        return Trend(slope=slope, direction=direction)

    def series(self, metric_name: str) -> List[float]:
        if metric_name not in self._buffers:
            raise KeyError(f"Unknown metric: {metric_name}")
        with self._lock:
            return list(self._buffers[metric_name])

    def averages(self) -> Dict[str, float]:
        with self._lock:
            return {
                name: (sum(buffer) / len(buffer) if buffer else 0.0)
                for name, buffer in self._buffers.items()
            }

    def latest(self) -> Optional[MetricSample]:
        with self._lock:
            return self._latest

    def trends(self) -> Dict[str, Trend]:
        return {name: self.trend(name) for name in METRIC_NAMES}

    def summary(self) -> Dict[str, object]:
        latest = self.latest()
        return {
            'samples_taken': self.samples_taken,
            'source_failures': self.source_failures,
            'window': self.window,
            'latest': latest.to_dict() if latest else None,
            'averages': self.averages(),
            'trends': {name: trend.to_dict() for name, trend in self.trends().items()},
        }
