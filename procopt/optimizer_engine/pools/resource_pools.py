"""Elastic Resource Pools with Blocking Acquisition and Utilization-Based Rebalancing

Resource management system that:
- Hands out capacity-bounded handles from named pools, blocking while a pool is full
- Expands busy pools and contracts idle ones on each rebalance pass
- Lets the optimization controller expand pools and reclaim outstanding handles
"""

import itertools
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...optimizer_core.config import PoolDefinition, default_pool_definitions
from ...optimizer_core.events import EventBus, POOL_CONTRACTED, POOL_EXPANDED
from ...optimizer_core.exceptions import ConfigurationError, UnknownPoolError

logger = logging.getLogger(__name__)

EXPAND_UTILIZATION = 0.8
CONTRACT_UTILIZATION = 0.3
EXPAND_RATIO = 0.2
CONTRACT_RATIO = 0.1
DEFAULT_MAX_MULTIPLIER = 10


@dataclass(frozen=True)
class PoolHandle:
    """Proof of one unit acquired from a pool"""
    pool_name: str
    handle_id: int
    acquired_at: float


class ResourcePool:
    """Capacity-bounded pool guarded by its own condition variable"""

    def __init__(self, definition: PoolDefinition, clock: Callable[[], float] = time.time):
        self.name = definition.name
        self.capacity = definition.capacity
        self.min_capacity = definition.min_capacity
        self.max_capacity = (definition.max_capacity if definition.max_capacity is not None
                             else max(definition.capacity * DEFAULT_MAX_MULTIPLIER, definition.min_capacity))
        self.clock = clock

        self.created = definition.capacity
        self.destroyed = 0
        self.revoked = 0

        # Oldest first
        self.outstanding: "OrderedDict[int, PoolHandle]" = OrderedDict()
        self.condition = threading.Condition(threading.RLock())
        self._ids = itertools.count(1)

        # Bumped on every acquire/release; rebalance skips pools it has already seen
        self.version = 0
        self.rebalanced_version = -1

    @property
    def in_use(self) -> int:
        return len(self.outstanding)

    @property
    def available(self) -> int:
        return self.capacity - self.in_use

    @property
    def utilization(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return self.in_use / self.capacity

    def acquire(self, timeout: Optional[float] = None) -> Optional[PoolHandle]:
        with self.condition:
            if not self.condition.wait_for(lambda: self.in_use < self.capacity, timeout=timeout):
                return None

            handle = PoolHandle(pool_name=self.name, handle_id=next(self._ids), acquired_at=self.clock())
            self.outstanding[handle.handle_id] = handle
            self.version += 1
            return handle

    def release(self, handle: PoolHandle) -> bool:
        with self.condition:
            if handle.pool_name != self.name or self.outstanding.pop(handle.handle_id, None) is None:
                logger.warning(f"Ignoring release of unknown or revoked handle {handle.handle_id} for pool '{self.name}'")
                return False

            self.version += 1
            self.condition.notify()
            return True

    def resize(self, new_capacity: int) -> int:
        """Set capacity (never below in-use); returns the applied capacity"""
        with self.condition:
            new_capacity = max(new_capacity, self.in_use, 0)
            delta = new_capacity - self.capacity
            if delta > 0:
                self.created += delta
                self.condition.notify_all()
            elif delta < 0:
                self.destroyed += -delta
            self.capacity = new_capacity
            return new_capacity

    def reclaim(self, fraction: float) -> int:
        """Revoke the oldest outstanding handles and wake waiters"""
        with self.condition:
            if not self.outstanding:
                return 0

            count = max(1, int(self.in_use * fraction))
            for _ in range(count):
                self.outstanding.popitem(last=False)

            self.revoked += count
            self.version += 1
            self.condition.notify_all()
            return count

    def to_dict(self) -> Dict[str, Any]:
        with self.condition:
            return {
                'name': self.name,
                'capacity': self.capacity,
                'in_use': self.in_use,
                'available': self.available,
                'utilization': self.utilization,
                'min_capacity': self.min_capacity,
                'max_capacity': self.max_capacity,
                'created': self.created,
                'destroyed': self.destroyed,
                'revoked': self.revoked,
            }


class ResourcePoolManager:
    """Named elastic pools with a single rebalance owner"""

    def __init__(self,
                 definitions: Optional[List[PoolDefinition]] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time):
        self.event_bus = event_bus
        self.clock = clock
        self.pools: Dict[str, ResourcePool] = {}
        self._rebalance_lock = threading.Lock()
        self._stats_lock = threading.Lock()

        self.pool_stats = {
            'rebalance_runs': 0,
            'rebalance_skipped': 0,
            'expansions': 0,
            'contractions': 0,
            'reclaimed': 0,
        }

        for definition in (definitions if definitions is not None else default_pool_definitions()):
            self.add_pool(definition)

        logger.info(f"ResourcePoolManager initialized with pools: {', '.join(self.pools) or 'none'}")

    def _count(self, **increments):
        with self._stats_lock:
            for name, amount in increments.items():
                self.pool_stats[name] += amount

    def add_pool(self, definition: PoolDefinition) -> ResourcePool:
        if definition.name in self.pools:
            raise ConfigurationError(f"duplicate pool definition: {definition.name}", 'pool_definitions')
        pool = ResourcePool(definition, clock=self.clock)
        self.pools[definition.name] = pool
        return pool

    def get_pool(self, pool_name: str) -> ResourcePool:
        pool = self.pools.get(pool_name)
        if pool is None:
            raise UnknownPoolError(pool_name)
        return pool

    # ===============================================================================
    # ACQUIRE / RELEASE
    # ===============================================================================

    def acquire(self, pool_name: str, timeout: Optional[float] = None) -> Optional[PoolHandle]:
        """Block until a unit is free; None when the timeout elapses first"""
        pool = self.get_pool(pool_name)
        handle = pool.acquire(timeout=timeout)
        if handle is None:
            logger.debug(f"Timed out acquiring from pool '{pool_name}'")
        return handle

    def release(self, pool_name: str, handle: PoolHandle) -> bool:
        return self.get_pool(pool_name).release(handle)

    # ===============================================================================
    # REBALANCING
    # ===============================================================================

    def rebalance(self) -> Dict[str, Tuple[int, int]]:
        """Resize pools by utilization; returns {pool: (old, new)} for changed pools

        Only one caller rebalances at a time; concurrent callers return {} immediately.
        """
        if not self._rebalance_lock.acquire(blocking=False):
            self._count(rebalance_skipped=1)
            return {}

        try:
            self._count(rebalance_runs=1)
            changes = {}
            for pool in self.pools.values():
                change = self._rebalance_pool(pool)
                if change:
                    changes[pool.name] = change
            return changes
        finally:
            self._rebalance_lock.release()

    def _rebalance_pool(self, pool: ResourcePool) -> Optional[Tuple[int, int]]:
        with pool.condition:
            if pool.version == pool.rebalanced_version:
                return None
            pool.rebalanced_version = pool.version

            old = pool.capacity
            utilization = pool.utilization

            if utilization > EXPAND_UTILIZATION:
                target = min(pool.max_capacity, old + math.ceil(old * EXPAND_RATIO))
            elif utilization < CONTRACT_UTILIZATION and old > pool.min_capacity:
                target = max(pool.min_capacity, old - math.ceil(old * CONTRACT_RATIO))
            else:
                return None

            new = pool.resize(target)

        if new == old:
            return None

        self._announce(pool, old, new)
        return old, new

    def _announce(self, pool: ResourcePool, old: int, new: int):
        if new > old:
            self._count(expansions=1)
            event_name = POOL_EXPANDED
            logger.info(f"Expanded pool '{pool.name}' from {old} to {new}")
        else:
            self._count(contractions=1)
            event_name = POOL_CONTRACTED
            logger.info(f"Contracted pool '{pool.name}' from {old} to {new}")

        if self.event_bus:
            self.event_bus.emit(event_name, {'pool': pool.name, 'old_capacity': old, 'new_capacity': new})

    # ===============================================================================
    # CONTROLLER ACTIONS
    # ===============================================================================

    def expand(self, pool_name: str, increment: int) -> int:
        """Grow a pool by increment (bounded by its max capacity); returns the new capacity"""
        pool = self.get_pool(pool_name)
        with pool.condition:
            old = pool.capacity
            new = pool.resize(min(pool.max_capacity, old + max(0, increment)))

        if new != old:
            self._announce(pool, old, new)
        return new

    def expand_all(self, ratio: float) -> Dict[str, int]:
        return {
            name: self.expand(name, math.ceil(pool.capacity * ratio))
            for name, pool in self.pools.items()
        }

    def reclaim(self, fraction: float = 0.1) -> Dict[str, int]:
        """Revoke the oldest outstanding handles of every pool"""
        reclaimed = {}
        for name, pool in self.pools.items():
            count = pool.reclaim(fraction)
            if count:
                reclaimed[name] = count
                self._count(reclaimed=count)
                logger.warning(f"Reclaimed {count} handles from pool '{name}'")
        return reclaimed

    # ===============================================================================
    # STATISTICS
    # ===============================================================================

    @property
    def efficiency(self) -> float:
        """Mean utilization across pools"""
        if not self.pools:
            return 0.0
        return sum(pool.utilization for pool in self.pools.values()) / len(self.pools)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: pool.to_dict() for name, pool in self.pools.items()}

    def statistics(self) -> Dict[str, Any]:
        with self._stats_lock:
            pool_stats = self.pool_stats.copy()
        return {
            'pools': self.snapshot(),
            'efficiency': self.efficiency,
            'pool_stats': pool_stats,
        }
