"""
Cache module for DocDB.

This module provides:
- The Cache component and CacheAdapter protocol (base.py)
- Key builders (keys.py)
- In-process and Redis transports (memory.py, redis_cache.py)
"""

from .base import Cache, CacheAdapter, create_cache
from .memory import MemoryCacheAdapter

__all__ = [
    "Cache",
    "CacheAdapter",
    "MemoryCacheAdapter",
    "create_cache",
]
