"""Circuit Breaker - Short-circuits task handlers while failures persist"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitBreakerState(Enum):
    """Circuit breaker states for handling failures"""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Circuit is open, blocking handler calls
    HALF_OPEN = "half_open"  # Testing if handlers recovered


@dataclass
class CircuitBreaker:
    """Circuit breaker consulted before each task handler call"""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 3
    clock: Callable[[], float] = time.time

    state: CircuitBreakerState = CircuitBreakerState.CLOSED
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    half_open_calls: int = 0
    times_opened: int = 0
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def record_success(self):
        """Record a successful operation"""
        with self._lock:
            if self.state == CircuitBreakerState.HALF_OPEN:
                self.state = CircuitBreakerState.CLOSED
                self.half_open_calls = 0
                logger.info("Circuit breaker closed - handlers recovered")
            if self.state == CircuitBreakerState.CLOSED:
                self.failure_count = 0

    def record_failure(self):
        """Record a failed operation"""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self.clock()

            if self.state == CircuitBreakerState.CLOSED and self.failure_count >= self.failure_threshold:
                self._open()
                logger.warning(f"Circuit breaker opened - {self.failure_count} consecutive failures")
            elif self.state == CircuitBreakerState.HALF_OPEN:
                self._open()
                logger.warning("Circuit breaker reopened during half-open test")

    def force_open(self, reason: str = ""):
        """Open the breaker immediately; it half-opens after the recovery timeout"""
        with self._lock:
            self.last_failure_time = self.clock()
            if self.state != CircuitBreakerState.OPEN:
                self._open()
                logger.warning(f"Circuit breaker forced open{': ' + reason if reason else ''}")

    def _open(self):
        self.state = CircuitBreakerState.OPEN
        self.half_open_calls = 0
        self.times_opened += 1

    def can_execute(self) -> bool:
        """Check if operation can be executed"""
        with self._lock:
            if self.state == CircuitBreakerState.CLOSED:
                return True
            elif self.state == CircuitBreakerState.OPEN:
                if (self.last_failure_time is not None and
                        self.clock() - self.last_failure_time > self.recovery_timeout):
                    self.state = CircuitBreakerState.HALF_OPEN
                    self.half_open_calls = 1
                    logger.info("Circuit breaker moved to half-open state")
                    return True
                return False
            else:  # HALF_OPEN
                if self.half_open_calls < self.half_open_max_calls:
                    self.half_open_calls += 1
                    return True
                return False

    def reset(self):
        with self._lock:
            self.state = CircuitBreakerState.CLOSED
            self.failure_count = 0
            self.half_open_calls = 0
            self.last_failure_time = None

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'state': self.state.value,
                'failure_count': self.failure_count,
                'times_opened': self.times_opened,
                'recovery_timeout': self.recovery_timeout,
            }
