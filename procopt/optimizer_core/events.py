"""Optimizer Events - In-process publish/subscribe for optimizer notifications"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


# Event names
METRICS_COLLECTED = "metrics_collected"
TASK_COMPLETED = "task_completed"
CACHE_SET = "cache_set"
POOL_EXPANDED = "pool_expanded"
POOL_CONTRACTED = "pool_contracted"
OPTIMIZATION_APPLIED = "optimization_applied"
LOAD_SHEDDING_REQUESTED = "load_shedding_requested"
FORECASTS_GENERATED = "forecasts_generated"


class EventBus:
    """Synchronous event dispatcher

    Listener exceptions are logged and dropped so that one misbehaving
    subscriber never breaks the component that emitted the event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._listeners[event_name].append(callback)

    def unsubscribe(self, event_name: str, callback: Callable[[Any], None]) -> bool:
        with self._lock:
            listeners = self._listeners.get(event_name, [])
            if callback in listeners:
                listeners.remove(callback)
                return True
            return False

    def emit(self, event_name: str, payload: Any = None) -> int:
        """Deliver payload to every listener, return the number notified"""
        with self._lock:
            listeners = list(self._listeners.get(event_name, []))

        for callback in listeners:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Listener for '{event_name}' failed: {e}")

        return len(listeners)

    def listener_count(self, event_name: str) -> int:
        with self._lock:
            return len(self._listeners.get(event_name, []))

    def clear(self):
        with self._lock:
            self._listeners.clear()
