"""Shared fixtures: every Database-level test runs on both adapters."""

import pytest

from dbaas.docdb import Database
from dbaas.docdb.adapters import InMemoryAdapter, SQLiteAdapter
from dbaas.docdb.cache import Cache, MemoryCacheAdapter


@pytest.fixture(params=["memory", "sqlite"])
def adapter(request):
    """Fresh adapter of each kind."""
    if request.param == "memory":
        yield InMemoryAdapter(namespace="test")
    else:
        sqlite_adapter = SQLiteAdapter(":memory:", namespace="test")
        yield sqlite_adapter
        sqlite_adapter.close()


@pytest.fixture
def cache():
    """In-process cache shared by the database under test."""
    return Cache(MemoryCacheAdapter(), namespace="test")


@pytest.fixture
def database(adapter, cache):
    """Database with the default role set (any)."""
    return Database(adapter, cache=cache)
