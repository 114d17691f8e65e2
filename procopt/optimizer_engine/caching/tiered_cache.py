"""Tiered Cache Implementation - Three-level cache with promotion and per-level eviction"""

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...optimizer_core.config import CacheLevelConfig, default_cache_levels
from ...optimizer_core.events import EventBus, CACHE_SET
from ...optimizer_core.exceptions import ConfigurationError
from ...optimizer_core.models import CachePriority, EvictionPolicy

logger = logging.getLogger(__name__)

# Size placement thresholds (estimated bytes)
SMALL_ENTRY_SIZE = 1000
MEDIUM_ENTRY_SIZE = 10000

# Used when a value cannot be measured; lands in the slowest tier unless priority overrides
UNMEASURABLE_SIZE = 10 ** 9

PROMOTION_THRESHOLD = 5

EVICTION_FRACTIONS = {
    EvictionPolicy.LRU: 0.2,
    EvictionPolicy.LFU: 0.2,
    EvictionPolicy.TTL: 0.3,
}

MIN_AGGRESSIVENESS = 0.25
MAX_AGGRESSIVENESS = 4.0


@dataclass
class CacheEntry:
    """Cache entry with creation and access tracking"""
    key: str
    value: Any
    created_at: float
    last_accessed: float
    access_count: int = 0
    priority: CachePriority = CachePriority.MEDIUM
    size_estimate: int = 0

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return now - self.created_at > ttl_seconds

    def touch(self, now: float):
        self.access_count += 1
        self.last_accessed = now


@dataclass
class TieredCacheStats:
    """Monotonic cache counters"""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    promotions: int = 0
    expired: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hits': self.hits,
            'misses': self.misses,
            'evictions': self.evictions,
            'promotions': self.promotions,
            'expired': self.expired,
            'hit_rate': self.hit_rate,
        }


def estimate_size(value: Any) -> int:
    """Rough size estimation for cache entries"""
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    elif isinstance(value, str):
        return len(value.encode('utf-8'))
    elif isinstance(value, bool):
        return 1
    elif isinstance(value, (int, float)):
        return 8
    elif value is None:
        return 0
    elif isinstance(value, (list, tuple, set, frozenset)):
        return sum(estimate_size(item) for item in value)
    elif isinstance(value, dict):
        return sum(estimate_size(k) + estimate_size(v) for k, v in value.items())
    else:
        return 1024  # Default estimate for complex objects


# ===============================================================================
# CACHE LEVEL
# ===============================================================================

class CacheLevel:
    """One tier of the cache with its own TTL, capacity, policy and lock"""

    def __init__(self, number: int, config: CacheLevelConfig):
        self.number = number
        self.policy = config.eviction_policy
        self.base_ttl_ms = config.ttl_ms
        self.base_max_entries = config.max_entries
        self.ttl_ms = config.ttl_ms
        self.max_entries = config.max_entries

        self.storage: Dict[str, CacheEntry] = {}
        self.lock = threading.RLock()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def name(self) -> str:
        return f"L{self.number}"

    @property
    def ttl_seconds(self) -> float:
        return self.ttl_ms / 1000.0

    def size(self) -> int:
        return len(self.storage)

    def is_full(self) -> bool:
        return len(self.storage) >= self.max_entries

    def lookup(self, key: str, now: float) -> Tuple[Optional[CacheEntry], bool]:
        """Return (entry, expired); an expired entry is removed and reported as missing"""
        with self.lock:
            entry = self.storage.get(key)
            if entry is None:
                return None, False
            if entry.is_expired(self.ttl_seconds, now):
                del self.storage[key]
                return None, True
            return entry, False

    def store(self, entry: CacheEntry, now: float) -> int:
        """Insert entry, running the eviction policy first when full; returns evicted count"""
        with self.lock:
            evicted = 0
            if entry.key not in self.storage and self.is_full():
                evicted = self.evict(now)
            self.storage[entry.key] = entry
            return evicted

    def delete(self, key: str) -> bool:
        with self.lock:
            return self.storage.pop(key, None) is not None

    def clear(self) -> int:
        with self.lock:
            count = len(self.storage)
            self.storage.clear()
            return count

    def expire(self, now: float) -> int:
        """Remove every expired entry"""
        with self.lock:
            expired_keys = [
                key for key, entry in self.storage.items()
                if entry.is_expired(self.ttl_seconds, now)
            ]
            for key in expired_keys:
                del self.storage[key]
            return len(expired_keys)

    def evict(self, now: float, force: bool = False) -> int:
        """Run this level's eviction policy once; removes at least one entry when non-empty"""
        with self.lock:
            if not self.storage:
                return 0

            if self.policy == EvictionPolicy.TTL:
                removed = self.expire(now)
                if self.is_full() or force:
                    removed += self._remove_ranked(lambda e: e.created_at, EVICTION_FRACTIONS[self.policy])
                return removed

            if self.policy == EvictionPolicy.LFU:
                ranking = lambda e: (e.access_count, e.last_accessed)
            else:
                ranking = lambda e: e.last_accessed

            return self._remove_ranked(ranking, EVICTION_FRACTIONS[self.policy])

    def _remove_ranked(self, ranking: Callable[[CacheEntry], Any], fraction: float) -> int:
        if not self.storage:
            return 0
        count = math.ceil(len(self.storage) * fraction)
        victims = sorted(self.storage.values(), key=ranking)[:count]
        for entry in victims:
            del self.storage[entry.key]
        self.logger.debug(f"{self.name} evicted {len(victims)} entries ({self.policy.value})")
        return len(victims)

    def resize(self, ttl_ms: float, max_entries: int) -> int:
        """Apply new limits, trimming least recently used entries beyond capacity"""
        with self.lock:
            self.ttl_ms = ttl_ms
            self.max_entries = max_entries

            excess = len(self.storage) - max_entries
            if excess <= 0:
                return 0
            victims = sorted(self.storage.values(), key=lambda e: e.last_accessed)[:excess]
            for entry in victims:
                del self.storage[entry.key]
            return len(victims)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level': self.number,
            'policy': self.policy.value,
            'ttl_ms': self.ttl_ms,
            'max_entries': self.max_entries,
            'entries': self.size(),
            'utilization': self.size() / self.max_entries if self.max_entries else 0.0,
        }


# ===============================================================================
# TIERED CACHE
# ===============================================================================

class TieredCache:
    """Three-level cache: fast/small level 1 down to slow/large level 3

    Entries are placed by priority and estimated size. Reads probe level 1
    first; an entry read more than five times below level 1 gets a copy
    promoted to level 1. Operations never raise: failures are logged and
    reported as misses.
    """

    def __init__(self,
                 levels: Optional[List[CacheLevelConfig]] = None,
                 clock: Callable[[], float] = time.time,
                 event_bus: Optional[EventBus] = None,
                 size_estimator: Callable[[Any], int] = estimate_size):
        level_configs = levels if levels is not None else default_cache_levels()
        self._validate_levels(level_configs)

        self.levels = [CacheLevel(number, cfg) for number, cfg in enumerate(level_configs, start=1)]
        self.clock = clock
        self.event_bus = event_bus
        self.size_estimator = size_estimator
        self.aggressiveness = 1.0

        self._stats = TieredCacheStats()
        self._stats_lock = threading.Lock()
        self._resize_lock = threading.Lock()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.logger.info(
            "Tiered cache initialized: " +
            ", ".join(f"L{n}={cfg.max_entries}/{cfg.ttl_ms:.0f}ms/{cfg.eviction_policy.value}"
                      for n, cfg in enumerate(level_configs, start=1))
        )

    @staticmethod
    def _validate_levels(levels: List[CacheLevelConfig]):
        if len(levels) != 3:
            raise ConfigurationError(f"exactly 3 cache levels are required, got {len(levels)}", 'cache_levels')
        for lower, upper in zip(levels, levels[1:]):
            if not (lower.ttl_ms < upper.ttl_ms and lower.max_entries < upper.max_entries):
                raise ConfigurationError(
                    "cache level TTLs and capacities must be strictly increasing", 'cache_levels'
                )

    def _count(self, **increments):
        with self._stats_lock:
            for name, amount in increments.items():
                setattr(self._stats, name, getattr(self._stats, name) + amount)

    # ===============================================================================
    # READ / WRITE
    # ===============================================================================

    def get(self, key: str) -> Tuple[Any, bool]:
        """Return (value, found) probing level 1, then 2, then 3"""
        try:
            now = self.clock()
            for level in self.levels:
                entry, expired = level.lookup(key, now)
                if expired:
                    self._count(expired=1, evictions=1)
                if entry is None:
                    continue

                with level.lock:
                    entry.touch(now)
                    access_count = entry.access_count
                self._count(hits=1)

                if level.number > 1 and access_count > PROMOTION_THRESHOLD:
                    self._promote(entry, now)

                return entry.value, True

            self._count(misses=1)
            return None, False

        except Exception as e:
            self.logger.error(f"Cache get failed for key '{key}': {e}")
            self._count(misses=1)
            return None, False

    def _promote(self, entry: CacheEntry, now: float):
        top = self.levels[0]
        copy = replace(entry, created_at=now, last_accessed=now)
        evicted = top.store(copy, now)
        self._count(promotions=1, evictions=evicted)
        self.logger.debug(f"Promoted '{entry.key}' to L1 after {entry.access_count} accesses")

    def _placement(self, priority: CachePriority, size: int) -> CacheLevel:
        if priority == CachePriority.HIGH or size < SMALL_ENTRY_SIZE:
            return self.levels[0]
        if priority == CachePriority.MEDIUM or size < MEDIUM_ENTRY_SIZE:
            return self.levels[1]
        return self.levels[2]

    def put(self, key: str, value: Any, priority: CachePriority = CachePriority.MEDIUM) -> bool:
        """Store value in the level chosen by priority and size; returns False on failure"""
        try:
            try:
                size = int(self.size_estimator(value))
            except Exception as e:
                self.logger.warning(f"Size estimate failed for key '{key}', assuming large entry: {e}")
                size = UNMEASURABLE_SIZE

            now = self.clock()
            target = self._placement(priority, size)

            for level in self.levels:
                if level is not target:
                    level.delete(key)

            entry = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                last_accessed=now,
                priority=priority,
                size_estimate=size
            )
            evicted = target.store(entry, now)
            if evicted:
                self._count(evictions=evicted)

            if self.event_bus:
                self.event_bus.emit(CACHE_SET, {'key': key, 'level': target.number, 'size': size})
            return True

        except Exception as e:
            self.logger.error(f"Cache put failed for key '{key}': {e}")
            return False

    def delete(self, key: str) -> bool:
        removed = False
        for level in self.levels:
            removed = level.delete(key) or removed
        return removed

    def clear(self):
        for level in self.levels:
            level.clear()

    # ===============================================================================
    # MAINTENANCE
    # ===============================================================================

    def sweep(self) -> int:
        """Purge expired entries from every level"""
        now = self.clock()
        removed = sum(level.expire(now) for level in self.levels)
        if removed:
            self._count(expired=removed, evictions=removed)
            self.logger.debug(f"Cache sweep removed {removed} expired entries")
        return removed

    def force_eviction(self, level_number: int) -> int:
        """Run the eviction policy of level 1, 2 or 3 once regardless of pressure"""
        if not 1 <= level_number <= len(self.levels):
            raise IndexError(f"No cache level {level_number}")
        removed = self.levels[level_number - 1].evict(self.clock(), force=True)
        if removed:
            self._count(evictions=removed)
        return removed

    def adjust_aggressiveness(self, factor: float) -> float:
        """Scale every level's TTL and capacity by factor, bounded to 0.25x..4x of the base

        Returns the effective overall scale.
        """
        if factor <= 0:
            raise ValueError("factor must be positive")

        with self._resize_lock:
            scale = min(MAX_AGGRESSIVENESS, max(MIN_AGGRESSIVENESS, self.aggressiveness * factor))
            self.aggressiveness = scale

            trimmed = 0
            previous_capacity = 0
            for level in self.levels:
                capacity = max(1, int(math.floor(level.base_max_entries * scale)), previous_capacity + 1)
                trimmed += level.resize(level.base_ttl_ms * scale, capacity)
                previous_capacity = capacity

        if trimmed:
            self._count(evictions=trimmed)

        self.logger.info(f"Cache aggressiveness set to {scale:.2f}x (trimmed {trimmed} entries)")
        return scale

    # ===============================================================================
    # STATISTICS
    # ===============================================================================

    @property
    def stats(self) -> TieredCacheStats:
        with self._stats_lock:
            return replace(self._stats)

    @property
    def hit_rate(self) -> float:
        return self.stats.hit_rate

    def sizes(self) -> List[int]:
        return [level.size() for level in self.levels]

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats['aggressiveness'] = self.aggressiveness
        stats['levels'] = [level.to_dict() for level in self.levels]
        return stats
