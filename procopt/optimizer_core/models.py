"""Optimizer Core Models - Shared enums and data structures"""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


# ===============================================================================
# ENUMS
# ===============================================================================

class CachePriority(Enum):
    """Cache placement hint (where an entry should live)"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskPriority(Enum):
    """Task dispatch class (when a task should run)"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def dispatch_order(cls):
        return (cls.HIGH, cls.MEDIUM, cls.LOW)


class EvictionPolicy(Enum):
    """Cache level eviction policies"""
    LRU = "lru"     # Least recently used
    LFU = "lfu"     # Least frequently used
    TTL = "ttl"     # Expire first, then oldest by creation


class TrendDirection(Enum):
    """Direction of a metric trend"""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class OptimizationType(Enum):
    """Corrective actions applied by the optimization controller"""
    CPU = "cpu"
    MEMORY = "memory"
    LATENCY = "latency"
    RELIABILITY = "reliability"
    LOAD_SHEDDING = "load_shedding"
    PREDICTIVE_SCALING = "predictive_scaling"


# ===============================================================================
# DATA CLASSES
# ===============================================================================

METRIC_NAMES = (
    'cpu_percent',
    'memory_percent',
    'response_time_ms',
    'throughput_per_sec',
    'error_rate_percent',
)


@dataclass
class MetricSample:
    """One sampling cycle of system metrics"""
    timestamp: float
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    response_time_ms: float = 0.0
    throughput_per_sec: float = 0.0
    error_rate_percent: float = 0.0

    def get(self, metric_name: str) -> float:
        return getattr(self, metric_name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Trend:
    """Least-squares trend of a metric buffer"""
    slope: float = 0.0
    direction: TrendDirection = TrendDirection.STABLE

    def to_dict(self) -> Dict[str, Any]:
        return {'slope': self.slope, 'direction': self.direction.value}


@dataclass
class TaskCompletion:
    """Payload of the task_completed event"""
    task_id: str
    success: bool
    duration_ms: float
    priority: TaskPriority
    wait_ms: float = 0.0
    error: Optional[BaseException] = None
    attempts: int = 1
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'success': self.success,
            'duration_ms': self.duration_ms,
            'priority': self.priority.value,
            'wait_ms': self.wait_ms,
            'error': repr(self.error) if self.error else None,
            'attempts': self.attempts,
        }


@dataclass
class Forecast:
    """Short-horizon load forecast for one hour bucket"""
    horizon_label: str
    expected_load: float
    confidence: float
    produced_at: datetime
    horizon_hours: int = 1
    sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'horizon': self.horizon_label,
            'expected_load': self.expected_load,
            'confidence': self.confidence,
            'produced_at': self.produced_at.isoformat(),
            'samples': self.sample_count,
        }


@dataclass
class OptimizationEvent:
    """Record of one applied corrective action"""
    optimization_type: OptimizationType
    trigger_reason: str
    impact: str
    success: bool = True
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.optimization_type.value,
            'trigger_reason': self.trigger_reason,
            'impact': self.impact,
            'success': self.success,
            'details': self.details,
            'error': self.error,
            'timestamp': self.timestamp,
        }
