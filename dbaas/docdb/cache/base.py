"""
Cache component and cache transport protocol for DocDB.

The Cache stores collection metadata and raw (unexpanded) documents under
namespaced keys and invalidates them on write. It is an optimization only:
a transport failure is logged by the transport and reads as a miss. A
failed purge is logged as a warning; the stale entry lives until its TTL.

Invariants:
    - Values are JSON-serialized; only plain dicts/lists are cached
    - Cached documents are stored before permission checks and checked after
      load, so one entry serves every role set
    - Every write path purges the affected keys once its transaction ends
    - A Cache without a transport is a valid no-op cache

How to change safely:
    - Key formats live in keys.py; change them there only
    - New transports implement CacheAdapter
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from . import keys

if TYPE_CHECKING:
    from ..config import DocDbConfig

logger = logging.getLogger(__name__)

DEFAULT_TTL = 60 * 60 * 24


@runtime_checkable
class CacheAdapter(Protocol):
    """Protocol for cache transports (in-process dict, Redis)."""

    def load(self, key: str) -> str | None:
        """Return the stored string or None if missing/unavailable."""
        ...

    def save(self, key: str, value: str, ttl: int) -> bool:
        """Store value with TTL in seconds. Returns True on success."""
        ...

    def purge(self, key: str) -> bool:
        """Remove key. Returns False only if the transport failed."""
        ...

    def purge_prefix(self, prefix: str) -> int | None:
        """Remove every key starting with ``prefix``.

        Returns the number of keys removed, or None if the transport failed.
        """
        ...

    def flush(self) -> bool:
        ...


class Cache:
    """Namespaced JSON cache over a CacheAdapter.

    Example:
        >>> cache = Cache(MemoryCacheAdapter(), namespace="app")
        >>> cache.save_document("city", {"$id": "paris", "name": "Paris"})
        True
        >>> cache.load_document("city", "paris")["name"]
        'Paris'
    """

    def __init__(
        self,
        adapter: CacheAdapter | None,
        namespace: str = "docdb",
        ttl: int = DEFAULT_TTL,
    ) -> None:
        keys.validate_component(namespace, "namespace")
        self.adapter = adapter
        self.namespace = namespace
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.adapter is not None

    def load(self, key: str) -> Any | None:
        if self.adapter is None:
            return None
        raw = self.adapter.load(key)
        if raw is None:
            logger.debug("Cache MISS: %s", key)
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            self.adapter.purge(key)
            return None
        logger.debug("Cache HIT: %s", key)
        return value

    def save(self, key: str, value: Any) -> bool:
        if self.adapter is None:
            return False
        return self.adapter.save(key, json.dumps(value), self.ttl)

    def purge(self, key: str) -> bool:
        if self.adapter is None:
            return False
        if not self.adapter.purge(key):
            logger.warning("Cache purge failed; entry may be stale", extra={"key": key})
            return False
        return True

    def load_document(self, collection: str, document_id: str) -> dict[str, Any] | None:
        return self.load(keys.document_key(self.namespace, collection, document_id))

    def save_document(self, collection: str, document: dict[str, Any]) -> bool:
        key = keys.document_key(self.namespace, collection, document["$id"])
        return self.save(key, dict(document))

    def purge_document(self, collection: str, document_id: str) -> bool:
        return self.purge(keys.document_key(self.namespace, collection, document_id))

    def purge_collection(self, collection: str) -> int:
        """Drop every cached document of ``collection``."""
        if self.adapter is None:
            return 0
        removed = self.adapter.purge_prefix(keys.collection_prefix(self.namespace, collection))
        if removed is None:
            logger.warning(
                "Cache collection purge failed; entries may be stale",
                extra={"namespace": self.namespace, "collection": collection},
            )
            return 0
        if removed:
            logger.info(
                "Cache INVALIDATE",
                extra={"namespace": self.namespace, "collection": collection, "keys": removed},
            )
        return removed

    def flush(self) -> bool:
        if self.adapter is None:
            return False
        return self.adapter.flush()


def create_cache(config: DocDbConfig) -> Cache:
    """Factory function to create a cache from configuration.

    Raises:
        ValueError: If the cache backend is not supported
    """
    from ..config import CacheBackend

    backend = config.cache.backend
    if backend == CacheBackend.NONE:
        return Cache(None, namespace=config.namespace, ttl=config.cache.ttl)
    elif backend == CacheBackend.MEMORY:
        from .memory import MemoryCacheAdapter

        return Cache(MemoryCacheAdapter(), namespace=config.namespace, ttl=config.cache.ttl)
    elif backend == CacheBackend.REDIS:
        from .redis_cache import RedisCacheAdapter

        transport = RedisCacheAdapter(
            host=config.redis.host,
            port=config.redis.port,
            db=config.redis.db,
            password=config.redis.password,
        )
        transport.connect()
        return Cache(transport, namespace=config.namespace, ttl=config.cache.ttl)
    else:
        raise ValueError(f"Unsupported cache backend: {backend}")
