"""
DocDB - Backend-agnostic document database with schemas, permissions,
and relationships.

This package implements a document store that runs on any storage backend
behind one Adapter interface:
- Collections with typed attributes, indexes, and permissions
- Documents validated against their collection before every write
- Role-based access control at collection and document level
- One-to-one, one-to-many, many-to-one, and many-to-many relationships
- A cache of raw documents and schema in front of the backend

Architecture:
    ┌─────────────┐     ┌─────────────────────────────────────────┐
    │    Host     │────▶│                Database                 │
    │ (per request│     │  Authorization ─ QueryEngine ─ Indexes  │
    │   roles)    │     │        RelationshipResolver             │
    └─────────────┘     └───────────┬──────────────────┬──────────┘
                                    │                  │
                                    ▼                  ▼
                        ┌──────────────────┐   ┌──────────────┐
                        │   SchemaStore    │──▶│    Cache     │
                        │ (_metadata docs) │   │ (memory/redis)│
                        └────────┬─────────┘   └──────────────┘
                                 │
                                 ▼
                        ┌──────────────────┐
                        │     Adapter      │
                        │ (sqlite/memory)  │
                        └──────────────────┘

Invariants:
    - Permissions are checked before any backend call
    - Schema lives in the backend itself, in the _metadata collection
    - Relationship expansion is bounded and cycle-safe
    - Cache entries are invalidated by every write that changes them

How to change safely:
    - New backends implement adapters.base.Adapter and declare features
      through get_support()
    - Keep document and metadata layouts stable; stored data outlives code

Version: see _version.py.
"""

from ._version import __version__
from .adapters import CURSOR_AFTER, CURSOR_BEFORE, Adapter, Feature, InMemoryAdapter, SQLiteAdapter
from .auth import Authorization, Permission, Role
from .cache import Cache, MemoryCacheAdapter
from .config import DocDbConfig
from .database import Database
from .document import Document
from .errors import (
    AuthorizationError,
    DatabaseError,
    Duplicate,
    Limit,
    NotFound,
    QueryError,
    Restricted,
    Structure,
)
from .helpers import ID
from .query import Query
from .schema import (
    Attribute,
    AttributeType,
    Collection,
    Index,
    IndexType,
    OnDelete,
    OrderType,
    RelationType,
)

__all__ = [
    "__version__",
    "Adapter",
    "Attribute",
    "AttributeType",
    "Authorization",
    "AuthorizationError",
    "CURSOR_AFTER",
    "CURSOR_BEFORE",
    "Cache",
    "Collection",
    "Database",
    "DatabaseError",
    "DocDbConfig",
    "Document",
    "Duplicate",
    "Feature",
    "ID",
    "InMemoryAdapter",
    "Index",
    "IndexType",
    "Limit",
    "MemoryCacheAdapter",
    "NotFound",
    "OnDelete",
    "OrderType",
    "Permission",
    "Query",
    "QueryError",
    "RelationType",
    "Restricted",
    "Role",
    "SQLiteAdapter",
    "Structure",
]
