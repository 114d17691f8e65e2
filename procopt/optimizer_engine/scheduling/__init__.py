"""Task Scheduling - Priority queues, load-aware admission and circuit breaking"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerState
from .scheduler import Task, TaskScheduler

__all__ = [
    'CircuitBreaker',
    'CircuitBreakerState',
    'Task',
    'TaskScheduler'
]
