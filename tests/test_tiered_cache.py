#!/usr/bin/env python3
"""
Tiered Cache Tests

Placement, TTL expiry, per-level eviction policies, promotion and
aggressiveness scaling of the three-level cache.
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import Mock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from procopt.optimizer_core.config import CacheLevelConfig
from procopt.optimizer_core.events import EventBus, CACHE_SET
from procopt.optimizer_core.exceptions import ConfigurationError
from procopt.optimizer_core.models import CachePriority, EvictionPolicy
from procopt.optimizer_engine.caching.tiered_cache import (
    CacheEntry, CacheLevel, TieredCache, estimate_size
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def small_levels(policy_l1=EvictionPolicy.LRU, policy_l2=EvictionPolicy.LFU, policy_l3=EvictionPolicy.TTL):
    return [
        CacheLevelConfig(ttl_ms=1000, max_entries=2, eviction_policy=policy_l1),
        CacheLevelConfig(ttl_ms=10000, max_entries=3, eviction_policy=policy_l2),
        CacheLevelConfig(ttl_ms=60000, max_entries=4, eviction_policy=policy_l3),
    ]


MEDIUM_VALUE = "m" * 2000      # lands in level 2 at MEDIUM priority
LARGE_VALUE = "l" * 20000      # lands in level 3 at LOW priority


class TestTieredCacheConstruction(unittest.TestCase):
    """Level structure validation"""

    def test_invalid_level_layouts(self):
        test_cases = [
            small_levels()[:2],
            [
                CacheLevelConfig(ttl_ms=1000, max_entries=5, eviction_policy=EvictionPolicy.LRU),
                CacheLevelConfig(ttl_ms=1000, max_entries=10, eviction_policy=EvictionPolicy.LFU),
                CacheLevelConfig(ttl_ms=5000, max_entries=20, eviction_policy=EvictionPolicy.TTL),
            ],
            [
                CacheLevelConfig(ttl_ms=1000, max_entries=50, eviction_policy=EvictionPolicy.LRU),
                CacheLevelConfig(ttl_ms=2000, max_entries=10, eviction_policy=EvictionPolicy.LFU),
                CacheLevelConfig(ttl_ms=5000, max_entries=20, eviction_policy=EvictionPolicy.TTL),
            ],
        ]
        for levels in test_cases:
            with self.subTest(levels=levels):
                with self.assertRaises(ConfigurationError):
                    TieredCache(levels)

    def test_default_levels(self):
        cache = TieredCache()
        self.assertEqual([level.policy for level in cache.levels],
                         [EvictionPolicy.LRU, EvictionPolicy.LFU, EvictionPolicy.TTL])


class TestTieredCacheOperations(unittest.TestCase):
    """Placement, lookup and eviction"""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = TieredCache(small_levels(), clock=self.clock)

    def test_miss_on_empty_cache(self):
        self.assertEqual(self.cache.get("absent"), (None, False))
        self.assertEqual(self.cache.stats.misses, 1)
        self.assertEqual(self.cache.hit_rate, 0.0)

    def test_placement_by_priority_and_size(self):
        test_cases = [
            ("high-large", LARGE_VALUE, CachePriority.HIGH, [1, 0, 0]),
            ("low-small", "tiny", CachePriority.LOW, [1, 0, 0]),
            ("medium-mid", MEDIUM_VALUE, CachePriority.MEDIUM, [0, 1, 0]),
            ("low-mid", MEDIUM_VALUE, CachePriority.LOW, [0, 1, 0]),
            ("low-large", LARGE_VALUE, CachePriority.LOW, [0, 0, 1]),
        ]
        for key, value, priority, expected_sizes in test_cases:
            with self.subTest(key=key):
                self.cache.clear()
                self.assertTrue(self.cache.put(key, value, priority))
                self.assertEqual(self.cache.sizes(), expected_sizes)
                self.assertEqual(self.cache.get(key), (value, True))

    def test_put_replaces_copies_in_other_levels(self):
        self.cache.put("k", LARGE_VALUE, CachePriority.LOW)
        self.cache.put("k", "small", CachePriority.LOW)

        self.assertEqual(self.cache.sizes(), [1, 0, 0])
        self.assertEqual(self.cache.get("k"), ("small", True))

    def test_lru_evicts_least_recently_used(self):
        self.cache.put("A", 1, CachePriority.HIGH)
        self.clock.advance(0.01)
        self.cache.put("B", 2, CachePriority.HIGH)
        self.clock.advance(0.01)
        self.cache.put("C", 3, CachePriority.HIGH)

        self.assertEqual(self.cache.get("A"), (None, False))
        self.assertEqual(self.cache.get("B"), (2, True))
        self.assertEqual(self.cache.get("C"), (3, True))
        self.assertEqual(self.cache.stats.evictions, 1)

    def test_lru_respects_reads(self):
        self.cache.put("A", 1, CachePriority.HIGH)
        self.clock.advance(0.01)
        self.cache.put("B", 2, CachePriority.HIGH)
        self.clock.advance(0.01)
        self.cache.get("A")
        self.clock.advance(0.01)
        self.cache.put("C", 3, CachePriority.HIGH)

        self.assertTrue(self.cache.get("A")[1])
        self.assertFalse(self.cache.get("B")[1])

    def test_lfu_evicts_least_frequently_used(self):
        for key in ("a", "b", "c"):
            self.cache.put(key, MEDIUM_VALUE, CachePriority.MEDIUM)
            self.clock.advance(0.01)
        self.cache.get("a")
        self.cache.get("a")
        self.cache.get("c")

        self.cache.put("d", MEDIUM_VALUE, CachePriority.MEDIUM)

        self.assertFalse(self.cache.get("b")[1])
        for key in ("a", "c", "d"):
            self.assertTrue(self.cache.get(key)[1])

    def test_entry_expires_after_ttl(self):
        self.cache.put("short", "v", CachePriority.HIGH)
        self.clock.advance(0.5)
        self.assertEqual(self.cache.get("short"), ("v", True))

        self.clock.advance(0.6)
        self.assertEqual(self.cache.get("short"), (None, False))
        self.assertEqual(self.cache.stats.expired, 1)

    def test_sweep_purges_expired_entries(self):
        self.cache.put("l1", "v", CachePriority.HIGH)
        self.cache.put("l3", LARGE_VALUE, CachePriority.LOW)
        self.clock.advance(2.0)

        self.assertEqual(self.cache.sweep(), 1)
        self.assertEqual(self.cache.sizes(), [0, 0, 1])

    def test_promotion_after_repeated_reads(self):
        self.cache.put("hot", MEDIUM_VALUE, CachePriority.MEDIUM)

        for _ in range(5):
            self.cache.get("hot")
        self.assertEqual(self.cache.sizes(), [0, 1, 0])

        self.cache.get("hot")
        self.assertEqual(self.cache.sizes(), [1, 1, 0])
        self.assertEqual(self.cache.stats.promotions, 1)
        self.assertEqual(self.cache.levels[0].storage["hot"].created_at, self.clock.now)

    def test_promoted_copy_obeys_level_one_ttl(self):
        self.cache.put("hot", MEDIUM_VALUE, CachePriority.MEDIUM)
        for _ in range(6):
            self.cache.get("hot")

        self.clock.advance(2.0)
        # Level 1 copy expired, level 2 copy still served
        self.assertEqual(self.cache.get("hot"), (MEDIUM_VALUE, True))
        self.assertEqual(self.cache.stats.expired, 1)
        self.assertEqual(self.cache.stats.promotions, 2)

    def test_level_never_exceeds_capacity(self):
        for i in range(20):
            self.cache.put(f"k{i}", i, CachePriority.HIGH)
            self.clock.advance(0.001)
            self.assertLessEqual(self.cache.sizes()[0], 2)

    def test_ttl_policy_expires_then_evicts_oldest(self):
        for i in range(4):
            self.cache.put(f"big{i}", LARGE_VALUE, CachePriority.LOW)
            self.clock.advance(1.0)
        self.cache.put("big4", LARGE_VALUE, CachePriority.LOW)

        # 30% of 4 entries rounds up to the two oldest
        self.assertEqual(self.cache.sizes()[2], 3)
        self.assertFalse(self.cache.get("big0")[1])
        self.assertFalse(self.cache.get("big1")[1])
        self.assertTrue(self.cache.get("big2")[1])
        self.assertTrue(self.cache.get("big4")[1])

    def test_force_eviction(self):
        self.cache.put("a", MEDIUM_VALUE, CachePriority.MEDIUM)
        self.cache.put("b", MEDIUM_VALUE, CachePriority.MEDIUM)

        self.assertEqual(self.cache.force_eviction(2), 1)
        self.assertEqual(self.cache.force_eviction(3), 0)
        with self.assertRaises(IndexError):
            self.cache.force_eviction(4)

    def test_unmeasurable_value_goes_to_slowest_level(self):
        cache = TieredCache(small_levels(), clock=self.clock,
                            size_estimator=Mock(side_effect=TypeError("no size")))

        self.assertTrue(cache.put("odd", object(), CachePriority.LOW))
        self.assertEqual(cache.sizes(), [0, 0, 1])

    def test_put_publishes_cache_set(self):
        bus = EventBus()
        received = []
        bus.subscribe(CACHE_SET, received.append)
        cache = TieredCache(small_levels(), clock=self.clock, event_bus=bus)

        cache.put("k", "v")
        self.assertEqual(received, [{'key': 'k', 'level': 1, 'size': 1}])


class TestCacheAggressiveness(unittest.TestCase):
    """Runtime scaling of TTLs and capacities"""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = TieredCache([
            CacheLevelConfig(ttl_ms=1000, max_entries=10, eviction_policy=EvictionPolicy.LRU),
            CacheLevelConfig(ttl_ms=10000, max_entries=40, eviction_policy=EvictionPolicy.LFU),
            CacheLevelConfig(ttl_ms=60000, max_entries=100, eviction_policy=EvictionPolicy.TTL),
        ], clock=self.clock)

    def test_shrink_trims_excess(self):
        for i in range(10):
            self.cache.put(f"k{i}", i, CachePriority.HIGH)
            self.clock.advance(0.001)

        scale = self.cache.adjust_aggressiveness(0.5)

        self.assertEqual(scale, 0.5)
        self.assertEqual(self.cache.levels[0].max_entries, 5)
        self.assertEqual(self.cache.levels[0].ttl_ms, 500)
        self.assertEqual(self.cache.sizes()[0], 5)
        # Most recently used survive
        self.assertTrue(self.cache.get("k9")[1])
        self.assertFalse(self.cache.get("k0")[1])

    def test_scale_is_bounded(self):
        for _ in range(10):
            self.cache.adjust_aggressiveness(0.5)
        self.assertEqual(self.cache.aggressiveness, 0.25)

        for _ in range(10):
            self.cache.adjust_aggressiveness(3.0)
        self.assertEqual(self.cache.aggressiveness, 4.0)
        self.assertEqual(self.cache.levels[2].max_entries, 400)

    def test_level_ordering_preserved(self):
        cache = TieredCache([
            CacheLevelConfig(ttl_ms=1000, max_entries=1, eviction_policy=EvictionPolicy.LRU),
            CacheLevelConfig(ttl_ms=2000, max_entries=2, eviction_policy=EvictionPolicy.LFU),
            CacheLevelConfig(ttl_ms=3000, max_entries=3, eviction_policy=EvictionPolicy.TTL),
        ], clock=self.clock)
        cache.adjust_aggressiveness(0.25)

        capacities = [level.max_entries for level in cache.levels]
        self.assertEqual(capacities, [1, 2, 3])

    def test_rejects_non_positive_factor(self):
        with self.assertRaises(ValueError):
            self.cache.adjust_aggressiveness(0)


class TestEstimateSize(unittest.TestCase):

    def test_estimates(self):
        test_cases = [
            (b"abcd", 4),
            ("héllo", 6),
            (3, 8),
            (None, 0),
            ([1, 2], 16),
            ({"k": "vv"}, 3),
        ]
        for value, expected in test_cases:
            with self.subTest(value=value):
                self.assertEqual(estimate_size(value), expected)


class TestCacheLevel(unittest.TestCase):

    def test_evict_on_empty_level(self):
        level = CacheLevel(1, CacheLevelConfig(ttl_ms=10, max_entries=1, eviction_policy=EvictionPolicy.LRU))
        self.assertEqual(level.evict(0.0), 0)
        self.assertEqual(level.name, "L1")

    def test_eviction_count_rounds_up(self):
        test_cases = [
            (EvictionPolicy.LRU, 1, 1),
            (EvictionPolicy.LRU, 6, 2),
            (EvictionPolicy.LRU, 11, 3),
            (EvictionPolicy.LFU, 6, 2),
            (EvictionPolicy.LFU, 11, 3),
            (EvictionPolicy.TTL, 6, 2),
            (EvictionPolicy.TTL, 11, 4),
        ]
        for policy, entries, expected in test_cases:
            with self.subTest(policy=policy, entries=entries):
                level = CacheLevel(1, CacheLevelConfig(ttl_ms=60000, max_entries=entries,
                                                       eviction_policy=policy))
                for i in range(entries):
                    level.storage[f"k{i}"] = CacheEntry(key=f"k{i}", value=i,
                                                        created_at=float(i), last_accessed=float(i))

                self.assertEqual(level.evict(float(entries)), expected)
                self.assertEqual(level.size(), entries - expected)
                self.assertNotIn("k0", level.storage)


if __name__ == '__main__':
    unittest.main()
