"""Tiered Caching System - Multi-level cache with promotion and adaptive sizing"""

from .tiered_cache import (
    CacheEntry,
    CacheLevel,
    TieredCache,
    TieredCacheStats,
    estimate_size
)

__all__ = [
    'CacheEntry',
    'CacheLevel',
    'TieredCache',
    'TieredCacheStats',
    'estimate_size'
]
