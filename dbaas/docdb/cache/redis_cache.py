"""Redis cache transport.

Shares cached metadata and documents between processes that use the same
backend and namespace. Call connect() at startup and disconnect() at
shutdown. Connection and command failures are logged and read as misses;
a lost connection is retried once per operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

_GLOB_SPECIAL = "*?[]\\"


def _escape_glob(value: str) -> str:
    return "".join("\\" + c if c in _GLOB_SPECIAL else c for c in value)


class RedisCacheAdapter:
    """Sync Redis CacheAdapter with TTL support."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            redis_client: Optional Redis client for testing or DI
            host: Redis host
            port: Redis port
            db: Redis database number
            password: Optional Redis password
        """
        self.redis = redis_client
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._connected = redis_client is not None

    def connect(self) -> None:
        """Establish the Redis connection. Failure leaves the cache disabled."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
            )
            self.redis.ping()
            self._connected = True
            logger.info("Redis cache connected: %s:%s", self.host, self.port)
        except (redis.ConnectionError, redis.TimeoutError) as e:
            logger.warning("Redis connection failed: %s. Cache disabled.", e)
            self._connected = False
            self.redis = None

    def disconnect(self) -> None:
        if self.redis is not None:
            self.redis.close()
            self.redis = None
            self._connected = False
            logger.info("Redis cache disconnected")

    def _reconnect(self) -> bool:
        if self.redis is None:
            return False
        try:
            self.redis.close()
        except redis.RedisError:
            logger.debug("Ignoring error while closing stale Redis client")
        self.redis = None
        self._connected = False
        self.connect()
        return self._connected

    def is_available(self) -> bool:
        return self._connected and self.redis is not None

    def _run(self, operation: str, key: str, call: Callable[[redis.Redis], T], default: T) -> T:
        if not self.is_available() or self.redis is None:
            return default
        try:
            return call(self.redis)
        except (redis.ConnectionError, redis.TimeoutError):
            if self._reconnect() and self.redis is not None:
                try:
                    return call(self.redis)
                except redis.RedisError:
                    logger.exception("Cache %s error for %s after reconnect", operation, key)
                    return default
            logger.warning("Cache %s unavailable for %s (Redis disconnected)", operation, key)
            return default
        except redis.RedisError:
            logger.exception("Cache %s error for %s", operation, key)
            return default

    def load(self, key: str) -> str | None:
        return self._run("get", key, lambda r: r.get(key), None)

    def save(self, key: str, value: str, ttl: int) -> bool:
        def call(r: redis.Redis) -> bool:
            r.setex(key, ttl, value)
            return True

        return self._run("set", key, call, False)

    def purge(self, key: str) -> bool:
        def call(r: redis.Redis) -> bool:
            r.delete(key)
            return True

        return self._run("delete", key, call, False)

    def purge_prefix(self, prefix: str) -> int | None:
        """Delete all keys under prefix using SCAN + batched UNLINK."""
        chunk_size = 500
        pattern = _escape_glob(prefix) + "*"

        def call(r: redis.Redis) -> int:
            deleted = 0
            chunk: list[Any] = []
            for key in r.scan_iter(match=pattern):
                chunk.append(key)
                if len(chunk) >= chunk_size:
                    deleted += _unlink(r, chunk)
                    chunk = []
            if chunk:
                deleted += _unlink(r, chunk)
            return deleted

        return self._run("delete_pattern", pattern, call, None)

    def flush(self) -> bool:
        def call(r: redis.Redis) -> bool:
            r.flushdb()
            logger.warning("Cache CLEARED: all keys deleted")
            return True

        return self._run("flush", "*", call, False)


def _unlink(client: redis.Redis, keys: list[Any]) -> int:
    with client.pipeline(transaction=False) as pipe:
        pipe.unlink(*keys)
        results = pipe.execute()
    return sum(int(r or 0) for r in results)
