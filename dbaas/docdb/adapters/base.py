"""
Base protocol and types for storage adapters.

This module defines the Adapter protocol that every storage backend must
implement, plus the capability vocabulary used to ask a backend what it
supports before delegating to it.

An adapter only stores and retrieves documents. It does not validate
structure, resolve relationships, or check permissions beyond filtering
query results by the role list it is handed; those belong to the core.

Invariants:
    - Collection ids passed to an adapter are logical; the adapter applies
      its namespace to physical names
    - get_document() returns an empty Document when nothing is stored
    - A uniqueness violation surfaces as Duplicate; all other backend errors
      propagate unmodified
    - find() orders by the requested attributes, then by $id ascending

How to change safely:
    - Protocol changes require updating all implementations
    - New capabilities are added to Feature with a False default in backends
      that lack them
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Protocol,
    runtime_checkable,
)
import logging

from ..document import Document
from ..schema.types import Attribute, IndexType, OrderType

if TYPE_CHECKING:
    from ..config import DocDbConfig
    from ..query.query import Query

logger = logging.getLogger(__name__)

CURSOR_AFTER = "after"
CURSOR_BEFORE = "before"


class Feature(Enum):
    """Backend capabilities queried through Adapter.get_support()."""

    FULLTEXT_INDEX = "fulltextIndex"
    UNIQUE_INDEX = "uniqueIndex"
    TRANSACTIONS = "transactions"
    QUERY_CONTAINS = "queryContains"
    ATTRIBUTE_RESIZING = "attributeResizing"
    CASTING = "casting"


@runtime_checkable
class Adapter(Protocol):
    """Protocol for storage backends.

    Durability contract:
        - create/update/delete return only after the backend accepted the write
        - Inside transaction(), writes become visible atomically when the
          backend supports Feature.TRANSACTIONS; otherwise transaction() is a
          plain scope and each write stands alone

    Example:
        >>> adapter = SQLiteAdapter(":memory:", namespace="app")
        >>> adapter.create_collection("person", [], [])
        True
        >>> adapter.create_document("person", Document({"$id": "p1"}))
    """

    @property
    @abstractmethod
    def namespace(self) -> str:
        """Prefix applied to physical collection names."""
        ...

    @abstractmethod
    def get_support(self, feature: Feature) -> bool:
        """Whether the backend supports ``feature``."""
        ...

    @abstractmethod
    def get_limit_for_attributes(self) -> int:
        """Maximum attributes per collection (0 = unlimited)."""
        ...

    @abstractmethod
    def get_limit_for_indexes(self) -> int:
        """Maximum indexes per collection (0 = unlimited)."""
        ...

    @abstractmethod
    def get_document_size_limit(self) -> int:
        """Maximum estimated row/document width in bytes (0 = unlimited)."""
        ...

    @abstractmethod
    def get_limit_for_integer(self) -> int:
        """Largest integer the backend stores; unsigned values above it raise Limit."""
        ...

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Scope a group of writes; nested scopes join the outer one."""
        ...

    @abstractmethod
    def collection_exists(self, collection: str) -> bool:
        ...

    @abstractmethod
    def create_collection(
        self,
        collection: str,
        attributes: Sequence[Attribute],
        indexes: Sequence["IndexSpec"],
    ) -> bool:
        """Create physical storage for a collection.

        Raises:
            Duplicate: If the collection already exists
        """
        ...

    @abstractmethod
    def delete_collection(self, collection: str) -> bool:
        ...

    @abstractmethod
    def create_attribute(self, collection: str, attribute: Attribute) -> bool:
        ...

    @abstractmethod
    def delete_attribute(self, collection: str, key: str) -> bool:
        ...

    @abstractmethod
    def create_index(
        self,
        collection: str,
        key: str,
        type: IndexType,
        attributes: Sequence[str],
        lengths: Sequence[int] = (),
        orders: Sequence[OrderType] = (),
    ) -> bool:
        """Create a physical index.

        Returns:
            True when the backend confirmed the index exists
        """
        ...

    @abstractmethod
    def delete_index(self, collection: str, key: str) -> bool:
        ...

    @abstractmethod
    def create_document(self, collection: str, document: Document) -> Document:
        """Insert a document.

        Raises:
            Duplicate: If $id or a unique index value already exists
        """
        ...

    @abstractmethod
    def update_document(self, collection: str, document: Document) -> Document:
        """Replace a stored document (matched by $id)."""
        ...

    @abstractmethod
    def delete_document(self, collection: str, document_id: str) -> bool:
        ...

    @abstractmethod
    def get_document(self, collection: str, document_id: str) -> Document:
        ...

    @abstractmethod
    def find(
        self,
        collection: str,
        queries: Sequence["Query"] = (),
        limit: int | None = 25,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType] = (),
        cursor: Document | None = None,
        cursor_direction: str = CURSOR_AFTER,
        roles: Sequence[str] | None = None,
    ) -> list[Document]:
        """Execute a validated query.

        Args:
            collection: Logical collection id
            queries: Filter queries (all must match)
            limit: Maximum documents (None = unlimited)
            offset: Documents to skip
            order_attributes: Attributes to order by
            order_types: Direction per order attribute (default ASC)
            cursor: Document to paginate from
            cursor_direction: CURSOR_AFTER or CURSOR_BEFORE
            roles: When set, only documents readable by one of these roles

        Returns:
            Matching documents in order
        """
        ...

    @abstractmethod
    def count(
        self,
        collection: str,
        queries: Sequence["Query"] = (),
        max: int | None = None,
        roles: Sequence[str] | None = None,
    ) -> int:
        ...


class IndexSpec(Protocol):
    """Anything shaped like schema.types.Index."""

    key: str
    type: IndexType
    attributes: tuple[str, ...]
    lengths: tuple[int, ...]
    orders: tuple[OrderType, ...]


def order_directions(
    order_attributes: Sequence[str],
    order_types: Sequence[OrderType],
) -> Iterator[tuple[str, OrderType]]:
    """Pair order attributes with directions, ending with $id ascending."""
    seen_id = False
    for i, attribute in enumerate(order_attributes):
        direction = order_types[i] if i < len(order_types) else OrderType.ASC
        if attribute == "$id":
            seen_id = True
        yield attribute, direction
    if not seen_id:
        yield "$id", OrderType.ASC


def create_adapter(config: "DocDbConfig") -> Adapter:
    """Factory function to create an adapter from configuration.

    Args:
        config: Database configuration

    Returns:
        Appropriate Adapter implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import AdapterBackend
    from .memory import InMemoryAdapter
    from .sqlite import SQLiteAdapter

    if config.adapter == AdapterBackend.SQLITE:
        return SQLiteAdapter(
            config.sqlite.path,
            namespace=config.namespace,
            wal_mode=config.sqlite.wal_mode,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
        )
    elif config.adapter == AdapterBackend.MEMORY:
        return InMemoryAdapter(namespace=config.namespace)
    else:
        raise ValueError(f"Unsupported adapter backend: {config.adapter}")
