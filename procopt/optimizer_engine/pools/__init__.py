"""Resource Pools - Elastic, capacity-bounded handle pools"""

from .resource_pools import PoolHandle, ResourcePool, ResourcePoolManager

__all__ = [
    'PoolHandle',
    'ResourcePool',
    'ResourcePoolManager'
]
