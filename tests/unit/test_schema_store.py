"""
Unit tests for the SchemaStore.

Tests cover:
- Bootstrap of the metadata collection
- Collection create/get/list/delete
- Attribute and index bookkeeping
- Adapter limits
- Cache invalidation on every mutation
"""

import pytest

from dbaas.docdb.adapters import InMemoryAdapter
from dbaas.docdb.cache import Cache, MemoryCacheAdapter
from dbaas.docdb.errors import Duplicate, Limit, NotFound
from dbaas.docdb.schema import (
    METADATA,
    Attribute,
    AttributeType,
    Collection,
    Index,
    IndexType,
    SchemaStore,
)


@pytest.fixture
def store(adapter, cache):
    """Bootstrapped schema store on each adapter."""
    schema = SchemaStore(adapter, cache)
    schema.bootstrap()
    return schema


def _city():
    return Collection(
        id="city",
        attributes=(
            Attribute("name", AttributeType.STRING, size=64, required=True),
            Attribute("population", AttributeType.INTEGER),
        ),
        indexes=(Index("pop", IndexType.KEY, ("population",)),),
    )


class TestSchemaStore:
    """Tests for SchemaStore on every adapter."""

    def test_bootstrap_is_idempotent(self, store, adapter):
        """Bootstrapping twice keeps one metadata collection."""
        store.bootstrap()
        assert adapter.collection_exists(METADATA)
        assert store.get(METADATA).id == METADATA

    def test_create_and_get(self, store, adapter):
        """Created collections are persisted and retrievable."""
        store.create(_city())
        assert adapter.collection_exists("city")
        assert store.get("city") == _city()

    def test_create_duplicate(self, store):
        """Creating an existing collection raises Duplicate."""
        store.create(_city())
        with pytest.raises(Duplicate):
            store.create(_city())

    def test_reserved_ids_are_internal_only(self, store):
        """Leading underscores are rejected unless internal."""
        with pytest.raises(ValueError):
            store.create(Collection(id="_hidden"))
        store.create(Collection(id="_hidden"), internal=True)
        assert store.exists("_hidden")

    def test_get_missing(self, store):
        """Unknown collections raise NotFound."""
        with pytest.raises(NotFound) as exc_info:
            store.get("nope")
        assert exc_info.value.code == "NOT_FOUND"

    def test_list(self, store):
        """list() returns stored definitions."""
        store.create(_city())
        store.create(Collection(id="country"))
        assert {c.id for c in store.list()} == {"city", "country"}

    def test_delete(self, store, adapter):
        """delete() drops storage and metadata."""
        store.create(_city())
        store.delete("city")
        assert not store.exists("city")
        assert not adapter.collection_exists("city")
        with pytest.raises(NotFound):
            store.delete("city")

    def test_add_attribute_purges_cache(self, store, cache):
        """A cached definition is refreshed after a mutation."""
        store.create(_city())
        store.get("city")
        assert cache.load_document(METADATA, "city") is not None
        store.add_attribute("city", Attribute("area", AttributeType.FLOAT))
        assert cache.load_document(METADATA, "city") is None
        assert store.get("city").get_attribute("area") is not None

    def test_add_attribute_duplicate(self, store):
        """Attribute keys can't be reused."""
        store.create(_city())
        with pytest.raises(Duplicate):
            store.add_attribute("city", Attribute("name", AttributeType.STRING, size=8))

    def test_remove_attribute_drops_covering_indexes(self, store):
        """Indexes over a removed attribute are dropped with it."""
        store.create(_city())
        updated = store.remove_attribute("city", "population")
        assert updated.get_attribute("population") is None
        assert updated.get_index("pop") is None
        with pytest.raises(NotFound):
            store.remove_attribute("city", "population")

    def test_index_metadata(self, store):
        """Index metadata is appended and removed."""
        store.create(_city())
        store.add_index("city", Index("name_key", IndexType.KEY, ("name",)))
        assert store.get("city").get_index("name_key") is not None
        store.remove_index("city", "name_key")
        assert store.get("city").get_index("name_key") is None


class TestSchemaLimits:
    """Tests for adapter-declared limits."""

    @pytest.fixture
    def cache(self):
        """Cache-less store."""
        return Cache(None, namespace="limits")

    def test_attribute_limit(self, cache):
        """Exceeding the attribute limit raises Limit."""
        store = SchemaStore(InMemoryAdapter(attribute_limit=2), cache)
        store.bootstrap()
        store.create(_city())
        with pytest.raises(Limit) as exc_info:
            store.add_attribute("city", Attribute("area", AttributeType.FLOAT))
        assert exc_info.value.code == "LIMIT"
        assert store.get("city").get_attribute("area") is None

    def test_index_limit(self, cache):
        """Exceeding the index limit raises Limit."""
        store = SchemaStore(InMemoryAdapter(index_limit=1), cache)
        store.bootstrap()
        store.create(_city())
        with pytest.raises(Limit):
            store.check_limits(store.get("city").with_index(Index("n", IndexType.KEY, ("name",))))

    def test_document_size_limit(self, cache):
        """Wide definitions are rejected before storage is created."""
        adapter = InMemoryAdapter(document_size_limit=100)
        store = SchemaStore(adapter, cache)
        store.bootstrap()
        with pytest.raises(Limit):
            store.create(_city())
        assert not adapter.collection_exists("city")

    def test_memory_transport_shared(self):
        """Two stores sharing a cache and adapter see the same schema."""
        adapter = InMemoryAdapter()
        cache = Cache(MemoryCacheAdapter(), namespace="shared")
        first = SchemaStore(adapter, cache)
        first.bootstrap()
        first.create(Collection(id="city"))
        second = SchemaStore(adapter, cache)
        assert second.get("city").id == "city"
