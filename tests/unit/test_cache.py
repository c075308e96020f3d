"""
Unit tests for the cache component and its transports.

Tests cover:
- Key format and validation
- JSON round trip of cached documents
- Collection-wide invalidation
- Failed purges are logged as warnings
- No-op cache without a transport
- In-process transport expiry
- Redis transport with a mocked client (errors read as misses)
"""

import logging
from unittest.mock import MagicMock, patch

import pytest
import redis

from dbaas.docdb.cache import Cache, MemoryCacheAdapter, create_cache
from dbaas.docdb.cache import keys
from dbaas.docdb.cache.redis_cache import RedisCacheAdapter
from dbaas.docdb.config import CacheBackend, CacheConfig, DocDbConfig


class TestCacheKeys:
    """Tests for key builders."""

    def test_document_key(self):
        """Keys are namespace:collection:id."""
        assert keys.document_key("app", "city", "paris") == "app:city:paris"
        assert keys.collection_prefix("app", "city") == "app:city:"

    def test_separator_rejected(self):
        """Components can't contain the separator."""
        with pytest.raises(ValueError):
            keys.document_key("app", "ci:ty", "paris")
        with pytest.raises(ValueError):
            Cache(None, namespace="a:b")


class TestCache:
    """Tests for Cache over the in-process transport."""

    @pytest.fixture
    def transport(self):
        """Fresh in-process transport."""
        return MemoryCacheAdapter()

    @pytest.fixture
    def cache(self, transport):
        """Cache using the transport."""
        return Cache(transport, namespace="app")

    def test_document_round_trip(self, cache):
        """Saved documents load back as plain dicts."""
        cache.save_document("city", {"$id": "paris", "name": "Paris", "tags": ["old"]})
        assert cache.load_document("city", "paris") == {"$id": "paris", "name": "Paris", "tags": ["old"]}
        assert cache.load_document("city", "rome") is None

    def test_purge_document(self, cache):
        """Purged documents read as misses."""
        cache.save_document("city", {"$id": "paris"})
        assert cache.purge_document("city", "paris")
        assert cache.load_document("city", "paris") is None

    def test_purge_collection(self, cache, transport):
        """Collection purge removes only that collection's keys."""
        cache.save_document("city", {"$id": "paris"})
        cache.save_document("city", {"$id": "rome"})
        cache.save_document("cityscape", {"$id": "x"})
        assert cache.purge_collection("city") == 2
        assert len(transport) == 1

    def test_undecodable_entry_discarded(self, cache, transport):
        """Corrupt entries are dropped and read as misses."""
        transport.save("app:city:paris", "{not json", 60)
        assert cache.load_document("city", "paris") is None
        assert len(transport) == 0

    def test_disabled_cache(self):
        """A cache without a transport never stores anything."""
        cache = Cache(None)
        assert not cache.enabled
        assert cache.save_document("city", {"$id": "paris"}) is False
        assert cache.load_document("city", "paris") is None
        assert cache.purge_collection("city") == 0

    def test_failed_purge_logged(self, caplog):
        """A transport that can't purge leaves a warning behind."""
        transport = MagicMock()
        transport.purge.return_value = False
        transport.purge_prefix.return_value = None
        cache = Cache(transport, namespace="app")
        with caplog.at_level(logging.WARNING, logger="dbaas.docdb.cache.base"):
            assert cache.purge_document("city", "paris") is False
            assert cache.purge_collection("city") == 0
        messages = [r.getMessage() for r in caplog.records]
        assert "Cache purge failed; entry may be stale" in messages
        assert "Cache collection purge failed; entries may be stale" in messages
        assert caplog.records[0].key == "app:city:paris"

    def test_purge_missing_key_is_not_a_failure(self, cache, caplog):
        """Purging a key that was never cached succeeds quietly."""
        with caplog.at_level(logging.WARNING):
            assert cache.purge_document("city", "nowhere") is True
        assert not caplog.records

    def test_expiry(self, transport):
        """Entries past their TTL are dropped on load."""
        transport.save("k", "v", 0)
        assert transport.load("k") is None
        assert len(transport) == 0

    def test_create_cache(self):
        """The factory honours the configured backend."""
        memory = create_cache(DocDbConfig(namespace="app"))
        assert isinstance(memory.adapter, MemoryCacheAdapter)
        disabled = create_cache(DocDbConfig(cache=CacheConfig(backend=CacheBackend.NONE)))
        assert not disabled.enabled


class TestRedisCacheAdapter:
    """Tests for RedisCacheAdapter with a mocked client."""

    @pytest.fixture
    def client(self):
        """Mocked Redis client."""
        return MagicMock()

    @pytest.fixture
    def transport(self, client):
        """Transport wrapping the mocked client."""
        return RedisCacheAdapter(redis_client=client)

    def test_load_and_save(self, transport, client):
        """Commands are forwarded to the client."""
        client.get.return_value = '{"$id": "paris"}'
        assert transport.load("app:city:paris") == '{"$id": "paris"}'
        assert transport.save("app:city:paris", "{}", 60) is True
        client.setex.assert_called_once_with("app:city:paris", 60, "{}")

    def test_command_error_reads_as_miss(self, transport, client):
        """Non-connection errors are logged and return the default."""
        client.get.side_effect = redis.ResponseError("WRONGTYPE")
        assert transport.load("k") is None
        assert transport.is_available()

    def test_reconnect_once(self, transport, client):
        """A lost connection is retried once with a new client."""
        client.get.side_effect = redis.ConnectionError("gone")
        fresh = MagicMock()
        fresh.get.return_value = "v"
        with patch("redis.Redis", return_value=fresh):
            assert transport.load("k") == "v"
        client.close.assert_called_once()
        assert transport.redis is fresh

    def test_reconnect_failure_disables(self, transport, client):
        """If reconnecting fails the transport reports unavailable."""
        client.get.side_effect = redis.ConnectionError("gone")
        fresh = MagicMock()
        fresh.ping.side_effect = redis.ConnectionError("still gone")
        with patch("redis.Redis", return_value=fresh):
            assert transport.load("k") is None
        assert not transport.is_available()
        assert transport.save("k", "v", 1) is False

    def test_connect_failure(self):
        """A failed connect leaves the cache disabled."""
        transport = RedisCacheAdapter(host="nowhere")
        broken = MagicMock()
        broken.ping.side_effect = redis.ConnectionError("refused")
        with patch("redis.Redis", return_value=broken):
            transport.connect()
        assert not transport.is_available()
        assert transport.load("k") is None

    def test_purge_prefix_escapes_and_unlinks(self, transport, client):
        """Prefix purge scans an escaped pattern and unlinks in a pipeline."""
        client.scan_iter.return_value = iter(["app:c*:1", "app:c*:2"])
        pipe = MagicMock()
        pipe.execute.return_value = [2]
        client.pipeline.return_value.__enter__.return_value = pipe
        assert transport.purge_prefix("app:c*:") == 2
        client.scan_iter.assert_called_once_with(match="app:c\\*:*")
        pipe.unlink.assert_called_once_with("app:c*:1", "app:c*:2")

    def test_purge_errors_report_failure(self, transport, client):
        """Command errors surface as a failed purge, not an empty one."""
        client.delete.side_effect = redis.ResponseError("READONLY")
        client.scan_iter.side_effect = redis.ResponseError("READONLY")
        assert transport.purge("k") is False
        assert transport.purge_prefix("app:city:") is None

    def test_disconnect(self, transport, client):
        """disconnect() closes the client."""
        transport.disconnect()
        client.close.assert_called_once()
        assert not transport.is_available()
