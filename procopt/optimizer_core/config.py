"""Optimizer Core Configuration - Options object and file-based loading"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ConfigurationError
from .models import EvictionPolicy, TaskPriority

logger = logging.getLogger(__name__)


# ===============================================================================
# CONFIGURATION DATA CLASSES
# ===============================================================================

@dataclass
class CacheLevelConfig:
    """Settings for one cache level"""
    ttl_ms: float
    max_entries: int
    eviction_policy: EvictionPolicy

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ttl_ms': self.ttl_ms,
            'max_entries': self.max_entries,
            'eviction_policy': self.eviction_policy.value,
        }


@dataclass
class PoolDefinition:
    """Initial definition of an elastic resource pool"""
    name: str
    capacity: int
    min_capacity: int = 2
    max_capacity: Optional[int] = None   # Defaults to 10x the initial capacity


@dataclass
class ControllerThresholds:
    """Trigger thresholds and action factors for the optimization controller"""
    cpu_high_percent: float = 80.0
    memory_high_percent: float = 85.0
    latency_high_ms: float = 200.0
    error_rate_high_percent: float = 5.0

    cache_shrink_factor: float = 0.8
    cache_grow_factor: float = 1.2
    load_shed_cache_factor: float = 0.9
    connection_pool_increment: int = 5
    reclaim_fraction: float = 0.1

    forecast_peak_ratio: float = 0.8
    forecast_min_confidence: float = 0.7
    forecast_expand_ratio: float = 0.2


_SCALAR_TYPES = {
    int: int,
    float: float,
    str: str,
    Optional[int]: int,
    Optional[str]: str,
}


def _coerce_fields(cls, values: Dict[str, Any], config_key: Optional[str] = None) -> Dict[str, Any]:
    """Convert scalar values (e.g. quoted YAML numbers) to the declared field types"""
    field_types = {f.name: f.type for f in fields(cls)}
    coerced = {}
    for name, value in values.items():
        target = _SCALAR_TYPES.get(field_types.get(name))
        if target is not None and value is not None and not isinstance(value, target):
            try:
                value = target(value)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"{name} must be {target.__name__}, got {value!r}", config_key or name
                )
        coerced[name] = value
    return coerced


def default_cache_levels() -> List[CacheLevelConfig]:
    return [
        CacheLevelConfig(ttl_ms=1000, max_entries=50, eviction_policy=EvictionPolicy.LRU),
        CacheLevelConfig(ttl_ms=10000, max_entries=200, eviction_policy=EvictionPolicy.LFU),
        CacheLevelConfig(ttl_ms=60000, max_entries=1000, eviction_policy=EvictionPolicy.TTL),
    ]


def default_pool_definitions() -> List[PoolDefinition]:
    return [
        PoolDefinition(name="connections", capacity=10),
        PoolDefinition(name="workers", capacity=4),
        PoolDefinition(name="memory_buffers", capacity=100),
    ]


def default_kind_priorities() -> Dict[str, TaskPriority]:
    return {
        'interactive': TaskPriority.HIGH,
        'realtime': TaskPriority.HIGH,
        'user_request': TaskPriority.HIGH,
        'api': TaskPriority.MEDIUM,
        'batch': TaskPriority.LOW,
        'background': TaskPriority.LOW,
        'maintenance': TaskPriority.LOW,
    }


@dataclass
class OptimizerConfig:
    """Main optimizer settings"""

    # Metrics
    sample_interval_ms: float = 1000
    metrics_window: int = 60

    # Cache
    cache_levels: List[CacheLevelConfig] = field(default_factory=default_cache_levels)
    cache_sweep_interval_ms: float = 5000

    # Scheduler
    max_capacity: int = 1000
    dispatch_interval_ms: float = 100
    worker_threads: int = 32
    admission_cpu_percent: float = 85.0
    admission_memory_percent: float = 90.0
    overload_ratio: float = 0.8
    kind_priorities: Dict[str, TaskPriority] = field(default_factory=default_kind_priorities)

    # Resource pools
    pool_definitions: List[PoolDefinition] = field(default_factory=default_pool_definitions)
    rebalance_interval_ms: float = 10000

    # Forecasting
    pattern_capture_interval_ms: float = 60000
    forecast_interval_ms: float = 300000
    forecast_horizons: int = 6
    pattern_history_size: int = 50

    # Controller
    thresholds: ControllerThresholds = field(default_factory=ControllerThresholds)

    # Persistence (None disables optimizer history)
    history_db_url: Optional[str] = None

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid setting"""
        for key in ('sample_interval_ms', 'cache_sweep_interval_ms', 'dispatch_interval_ms',
                    'rebalance_interval_ms', 'pattern_capture_interval_ms', 'forecast_interval_ms'):
            if getattr(self, key) <= 0:
                raise ConfigurationError(f"{key} must be positive", key)

        if self.metrics_window < 2:
            raise ConfigurationError("metrics_window must be at least 2", 'metrics_window')
        if self.max_capacity <= 0:
            raise ConfigurationError("max_capacity must be positive", 'max_capacity')
        if self.worker_threads <= 0:
            raise ConfigurationError("worker_threads must be positive", 'worker_threads')
        if not 0 < self.overload_ratio <= 1:
            raise ConfigurationError("overload_ratio must be in (0, 1]", 'overload_ratio')
        if self.forecast_horizons < 1:
            raise ConfigurationError("forecast_horizons must be at least 1", 'forecast_horizons')
        if self.pattern_history_size < 1:
            raise ConfigurationError("pattern_history_size must be at least 1", 'pattern_history_size')

        self._validate_cache_levels()
        self._validate_pools()

    def _validate_cache_levels(self):
        if len(self.cache_levels) != 3:
            raise ConfigurationError(
                f"exactly 3 cache levels are required, got {len(self.cache_levels)}", 'cache_levels'
            )

        for index, level in enumerate(self.cache_levels, start=1):
            if level.ttl_ms <= 0:
                raise ConfigurationError(f"cache level {index} ttl_ms must be positive", 'cache_levels')
            if level.max_entries <= 0:
                raise ConfigurationError(f"cache level {index} max_entries must be positive", 'cache_levels')

        for lower, upper in zip(self.cache_levels, self.cache_levels[1:]):
            if not lower.ttl_ms < upper.ttl_ms:
                raise ConfigurationError("cache level TTLs must be strictly increasing", 'cache_levels')
            if not lower.max_entries < upper.max_entries:
                raise ConfigurationError("cache level capacities must be strictly increasing", 'cache_levels')

    def _validate_pools(self):
        seen = set()
        for pool in self.pool_definitions:
            if not pool.name:
                raise ConfigurationError("pool name must not be empty", 'pool_definitions')
            if pool.name in seen:
                raise ConfigurationError(f"duplicate pool definition: {pool.name}", 'pool_definitions')
            seen.add(pool.name)

            if pool.capacity < 0 or pool.min_capacity < 0:
                raise ConfigurationError(f"pool '{pool.name}' capacities must not be negative", 'pool_definitions')
            if pool.max_capacity is not None and pool.max_capacity < pool.capacity:
                raise ConfigurationError(
                    f"pool '{pool.name}' max_capacity is below its initial capacity", 'pool_definitions'
                )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['cache_levels'] = [level.to_dict() for level in self.cache_levels]
        data['kind_priorities'] = {kind: p.value for kind, p in self.kind_priorities.items()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OptimizerConfig':
        """Build a config from plain data (YAML/JSON); unknown keys are ignored"""
        config = cls()
        data = dict(data or {})

        try:
            if 'cache_levels' in data:
                config.cache_levels = [
                    CacheLevelConfig(
                        ttl_ms=float(level['ttl_ms']),
                        max_entries=int(level['max_entries']),
                        eviction_policy=EvictionPolicy(level['eviction_policy'])
                    )
                    for level in data.pop('cache_levels')
                ]

            if 'pool_definitions' in data:
                config.pool_definitions = [
                    PoolDefinition(**_coerce_fields(PoolDefinition, pool, 'pool_definitions'))
                    for pool in data.pop('pool_definitions')
                ]

            if 'thresholds' in data:
                config.thresholds = ControllerThresholds(
                    **_coerce_fields(ControllerThresholds, data.pop('thresholds'), 'thresholds')
                )

            if 'kind_priorities' in data:
                config.kind_priorities = {
                    kind: TaskPriority(value) for kind, value in data.pop('kind_priorities').items()
                }
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration structure: {e}")

        known = {f.name for f in fields(cls)}
        unknown = [key for key in data if key not in known]
        for key in unknown:
            logger.warning(f"Ignoring unknown configuration key: {key}")
            del data[key]

        for key, value in _coerce_fields(cls, data).items():
            setattr(config, key, value)

        return config


# ===============================================================================
# CONFIGURATION MANAGER
# ===============================================================================

class ConfigManager:
    """Loads the optimizer configuration from a YAML or JSON file"""

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self.config_path = config_path
        self.overrides = overrides or {}
        self.config = self._load_config()

    def _load_config(self) -> OptimizerConfig:
        data: Dict[str, Any] = {}

        if self.config_path:
            if not os.path.exists(self.config_path):
                raise ConfigurationError(f"Configuration file not found: {self.config_path}")

            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    if self.config_path.endswith('.json'):
                        data = json.load(f)
                    else:
                        data = yaml.safe_load(f) or {}
            except (OSError, ValueError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config from {self.config_path}: {e}")

            if not isinstance(data, dict):
                raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        # Overrides have the highest priority
        for key, value in self.overrides.items():
            if value is not None:
                data[key] = value

        config = OptimizerConfig.from_dict(data)
        config.validate()
        return config

    def get_config(self) -> OptimizerConfig:
        return self.config

    @staticmethod
    def write_default_config(path: str) -> Path:
        """Write the default configuration as YAML and return its path"""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        content = "# ProcOpt Configuration File\n# Generated automatically with default values\n\n"
        content += yaml.safe_dump(OptimizerConfig().to_dict(), sort_keys=False)

        with open(target, 'w', encoding='utf-8') as f:
            f.write(content)

        logger.info(f"Created default configuration at: {target}")
        return target


def load_config(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> OptimizerConfig:
    """Convenience wrapper returning a validated OptimizerConfig"""
    return ConfigManager(config_path, overrides).get_config()
