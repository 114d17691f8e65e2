"""Load Forecaster - Hour-of-week load patterns and short-horizon forecasts"""

import logging
import statistics
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from ...optimizer_core.events import EventBus, FORECASTS_GENERATED
from ...optimizer_core.models import Forecast

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5

BucketKey = Tuple[int, int]  # (weekday 0=Monday, hour 0-23)


@dataclass
class LoadObservation:
    """One captured load measurement"""
    timestamp: datetime
    observed_load: float
    cpu_percent: float = 0.0
    memory_percent: float = 0.0


def bucket_for(moment: datetime) -> BucketKey:
    return moment.weekday(), moment.hour


class LoadForecaster:
    """Averages observed load per (weekday, hour) bucket and projects it forward"""

    def __init__(self,
                 horizons: int = 6,
                 history_size: int = 50,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time):
        self.horizons = horizons
        self.history_size = history_size
        self.event_bus = event_bus
        self.clock = clock

        self.patterns: Dict[BucketKey, Deque[LoadObservation]] = defaultdict(
            lambda: deque(maxlen=self.history_size)
        )
        self._forecasts: Dict[str, Forecast] = {}
        self._lock = threading.RLock()
        self.observations_recorded = 0
        self.last_generated: Optional[datetime] = None

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock())

    def record(self, observed_load: float, cpu_percent: float = 0.0,
               memory_percent: float = 0.0, at: Optional[datetime] = None) -> BucketKey:
        """Store an observation in the bucket of its weekday and hour"""
        moment = at or self._now()
        key = bucket_for(moment)

        with self._lock:
            self.patterns[key].append(LoadObservation(
                timestamp=moment,
                observed_load=observed_load,
                cpu_percent=cpu_percent,
                memory_percent=memory_percent
            ))
            self.observations_recorded += 1

        logger.debug(f"Recorded load {observed_load} in bucket day={key[0]} hour={key[1]}")
        return key

    def generate_forecasts(self, now: Optional[datetime] = None) -> Dict[str, Forecast]:
        """Forecast the next hours from matching buckets; buckets without history are skipped"""
        now = now or self._now()
        forecasts: Dict[str, Forecast] = {}

        with self._lock:
            for hours_ahead in range(1, self.horizons + 1):
                key = bucket_for(now + timedelta(hours=hours_ahead))
                history = self.patterns.get(key)
                if not history:
                    continue

                loads = [obs.observed_load for obs in history]
                expected = statistics.mean(loads)
                variance = statistics.pvariance(loads, mu=expected)
                confidence = max(MIN_CONFIDENCE, 1.0 - variance / (expected + 1.0))

                label = f"+{hours_ahead}h"
                forecasts[label] = Forecast(
                    horizon_label=label,
                    expected_load=expected,
                    confidence=confidence,
                    produced_at=now,
                    horizon_hours=hours_ahead,
                    sample_count=len(loads)
                )

            self._forecasts = forecasts
            self.last_generated = now

        logger.debug(f"Generated {len(forecasts)} forecasts across {self.horizons} horizons")

        if self.event_bus:
            self.event_bus.emit(FORECASTS_GENERATED, list(forecasts.values()))
        return dict(forecasts)

    def get_forecast(self, label: str) -> Optional[Forecast]:
        with self._lock:
            return self._forecasts.get(label)

    def forecasts(self) -> List[Forecast]:
        with self._lock:
            return sorted(self._forecasts.values(), key=lambda f: f.horizon_hours)

    def peak_forecast(self) -> Optional[Forecast]:
        candidates = self.forecasts()
        if not candidates:
            return None
        return max(candidates, key=lambda f: f.expected_load)

    def summary(self) -> Dict[str, Any]:
        peak = self.peak_forecast()
        with self._lock:
            return {
                'buckets': len(self.patterns),
                'observations_recorded': self.observations_recorded,
                'last_generated': self.last_generated.isoformat() if self.last_generated else None,
                'forecasts': {label: f.to_dict() for label, f in self._forecasts.items()},
                'peak': peak.to_dict() if peak else None,
            }
