"""
Configuration management for DocDB.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; hosts set them in deployment manifests
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class AdapterBackend(Enum):
    """Supported storage adapters."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class CacheBackend(Enum):
    """Supported cache transports."""

    MEMORY = "memory"
    REDIS = "redis"
    NONE = "none"


@dataclass(frozen=True)
class SQLiteConfig:
    """SQLite adapter configuration.

    Attributes:
        path: Database file path (":memory:" for an in-process database)
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    path: str = ":memory:"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SQLiteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("DOCDB_SQLITE_PATH", ":memory:"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Cache configuration.

    Attributes:
        backend: Cache transport
        ttl: Entry time-to-live in seconds
    """

    backend: CacheBackend = CacheBackend.MEMORY
    ttl: int = 86400

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("DOCDB_CACHE_BACKEND", "memory").lower()
        try:
            backend = CacheBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid DOCDB_CACHE_BACKEND '{backend_str}'. Must be one of: memory, redis, none"
            ) from None
        return cls(
            backend=backend,
            ttl=int(os.getenv("DOCDB_CACHE_TTL", "86400")),
        )


@dataclass(frozen=True)
class RedisConfig:
    """Redis cache transport configuration.

    Attributes:
        host: Redis host
        port: Redis port
        db: Redis database number
        password: Redis password (if authentication enabled)
    """

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD"),
        )


@dataclass(frozen=True)
class QueryConfig:
    """Query and relationship traversal limits.

    Attributes:
        relation_max_depth: Relationship hops followed when expanding reads
        default_limit: Page size when find() is called without a limit
        max_limit: Largest accepted page size
    """

    relation_max_depth: int = 3
    default_limit: int = 25
    max_limit: int = 5000

    @classmethod
    def from_env(cls) -> QueryConfig:
        """Load configuration from environment variables."""
        return cls(
            relation_max_depth=int(os.getenv("DOCDB_RELATION_MAX_DEPTH", "3")),
            default_limit=int(os.getenv("DOCDB_DEFAULT_LIMIT", "25")),
            max_limit=int(os.getenv("DOCDB_MAX_LIMIT", "5000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class DocDbConfig:
    """Complete database configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        namespace: Prefix for physical collection names and cache keys
        adapter: Which storage adapter to use
        sqlite: SQLite configuration (if adapter is SQLITE)
        cache: Cache configuration
        redis: Redis configuration (if cache backend is REDIS)
        query: Query and traversal limits
        observability: Logging configuration
    """

    namespace: str = "docdb"
    adapter: AdapterBackend = AdapterBackend.SQLITE
    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> DocDbConfig:
        """Load complete configuration from environment variables.

        Returns:
            DocDbConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        adapter_str = os.getenv("DOCDB_ADAPTER", "sqlite").lower()
        try:
            adapter = AdapterBackend(adapter_str)
        except ValueError:
            raise ValueError(
                f"Invalid DOCDB_ADAPTER '{adapter_str}'. Must be one of: sqlite, memory"
            ) from None

        config = cls(
            namespace=os.getenv("DOCDB_NAMESPACE", "docdb"),
            adapter=adapter,
            sqlite=SQLiteConfig.from_env(),
            cache=CacheConfig.from_env(),
            redis=RedisConfig.from_env(),
            query=QueryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.namespace or not self.namespace.replace("_", "").isalnum():
            raise ValueError(
                f"DOCDB_NAMESPACE must be alphanumeric (underscores allowed), got '{self.namespace}'"
            )
        if self.adapter == AdapterBackend.SQLITE and not self.sqlite.path:
            raise ValueError("DOCDB_SQLITE_PATH is required when DOCDB_ADAPTER=sqlite")
        if self.cache.backend == CacheBackend.REDIS and not self.redis.host:
            raise ValueError("REDIS_HOST is required when DOCDB_CACHE_BACKEND=redis")
        if self.cache.ttl <= 0:
            raise ValueError("DOCDB_CACHE_TTL must be positive")
        if self.query.relation_max_depth < 0:
            raise ValueError("DOCDB_RELATION_MAX_DEPTH must not be negative")
        if not 0 < self.query.default_limit <= self.query.max_limit:
            raise ValueError("DOCDB_DEFAULT_LIMIT must be positive and at most DOCDB_MAX_LIMIT")

        if self.adapter == AdapterBackend.SQLITE and self.sqlite.path != ":memory:":
            directory = os.path.dirname(os.path.abspath(self.sqlite.path))
            if not os.path.exists(directory):
                logger.warning(
                    f"Database directory does not exist: {directory}. "
                    "SQLite will fail to open the file."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "DocDB configuration loaded",
            extra={
                "namespace": self.namespace,
                "adapter": self.adapter.value,
                "sqlite_path": self.sqlite.path
                if self.adapter == AdapterBackend.SQLITE
                else None,
                "cache_backend": self.cache.backend.value,
                "redis_host": self.redis.host
                if self.cache.backend == CacheBackend.REDIS
                else None,
                "redis_password_set": self.redis.password is not None,
                "relation_max_depth": self.query.relation_max_depth,
                "log_level": self.observability.log_level,
            },
        )
