"""
In-memory document-store adapter.

This module provides a native document-store backend for:
- Unit tests
- Integration tests
- Local development without a database file

Documents are stored as plain dicts keyed by $id, one mapping per
namespaced collection. Filters, ordering, cursors and permission scoping
are evaluated in Python with the same semantics as the SQL adapter:
NULL never satisfies a comparison, NULLs sort first ascending, and ties are
broken by $id ascending.

Invariants:
    - All data is lost on process exit
    - Stored and returned documents are copies; callers cannot mutate storage
    - Unique indexes are enforced on every write (NULLs never collide)
    - No transaction support: transaction() is a plain scope without rollback

How to change safely:
    - Keep query semantics aligned with adapters/sqlite.py
    - Keep interface compatible with the Adapter protocol
"""

from __future__ import annotations

import copy
import functools
import logging
import re
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from ..auth.roles import roles_for_action
from ..document import Document
from ..errors import Duplicate, NotFound
from ..query import query as q
from ..query.query import Query
from ..schema.types import UNSIGNED_MAX, Attribute, IndexType, OrderType
from .base import CURSOR_AFTER, CURSOR_BEFORE, Feature, IndexSpec, order_directions

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


@dataclass
class _StoredIndex:
    key: str
    type: IndexType
    attributes: tuple[str, ...]


@dataclass
class InMemoryCollection:
    """Storage for one physical collection."""

    attributes: dict[str, Attribute] = field(default_factory=dict)
    indexes: dict[str, _StoredIndex] = field(default_factory=dict)
    documents: dict[str, dict[str, Any]] = field(default_factory=dict)


class InMemoryAdapter:
    """In-memory implementation of Adapter.

    Attributes:
        namespace: Prefix for physical collection names

    Thread safety:
        A single re-entrant lock serializes all operations.

    Example:
        >>> adapter = InMemoryAdapter(namespace="test")
        >>> adapter.create_collection("city", [], [])
        True
        >>> adapter.create_document("city", Document({"$id": "paris"}))["$id"]
        'paris'
    """

    def __init__(
        self,
        namespace: str = "docdb",
        attribute_limit: int = 0,
        index_limit: int = 0,
        document_size_limit: int = 0,
    ) -> None:
        """Initialize the adapter.

        Args:
            namespace: Prefix applied to physical collection names
            attribute_limit: Maximum attributes per collection (0 = unlimited)
            index_limit: Maximum indexes per collection (0 = unlimited)
            document_size_limit: Maximum estimated row width (0 = unlimited)
        """
        self._namespace = namespace
        self._attribute_limit = attribute_limit
        self._index_limit = index_limit
        self._document_size_limit = document_size_limit
        self._collections: dict[str, InMemoryCollection] = {}
        self._sequence = 0
        self._lock = threading.RLock()
        self._fail_next: Exception | None = None
        self._fail_after = 0

    @property
    def namespace(self) -> str:
        return self._namespace

    def _name(self, collection: str) -> str:
        return f"{self._namespace}_{collection}"

    def _get(self, collection: str) -> InMemoryCollection:
        stored = self._collections.get(self._name(collection))
        if stored is None:
            raise NotFound(
                f"Collection '{collection}' not found",
                resource_type="collection",
                resource_id=collection,
            )
        return stored

    def _maybe_fail(self) -> None:
        if self._fail_next is None:
            return
        if self._fail_after > 0:
            self._fail_after -= 1
            return
        error, self._fail_next = self._fail_next, None
        raise error

    # Capabilities

    def get_support(self, feature: Feature) -> bool:
        return feature in (
            Feature.FULLTEXT_INDEX,
            Feature.UNIQUE_INDEX,
            Feature.QUERY_CONTAINS,
            Feature.ATTRIBUTE_RESIZING,
        )

    def get_limit_for_attributes(self) -> int:
        return self._attribute_limit

    def get_limit_for_indexes(self) -> int:
        return self._index_limit

    def get_document_size_limit(self) -> int:
        return self._document_size_limit

    def get_limit_for_integer(self) -> int:
        return UNSIGNED_MAX

    @contextmanager
    def transaction(self) -> Iterator[None]:
        yield

    # Schema

    def collection_exists(self, collection: str) -> bool:
        return self._name(collection) in self._collections

    def create_collection(
        self,
        collection: str,
        attributes: Sequence[Attribute],
        indexes: Sequence[IndexSpec],
    ) -> bool:
        with self._lock:
            name = self._name(collection)
            if name in self._collections:
                raise Duplicate(f"Collection '{collection}' already exists", collection=collection)
            stored = InMemoryCollection()
            for attribute in attributes:
                stored.attributes[attribute.key] = attribute
            for index in indexes:
                stored.indexes[index.key] = _StoredIndex(index.key, index.type, tuple(index.attributes))
            self._collections[name] = stored
            logger.debug("Created collection", extra={"collection": name})
            return True

    def delete_collection(self, collection: str) -> bool:
        with self._lock:
            return self._collections.pop(self._name(collection), None) is not None

    def create_attribute(self, collection: str, attribute: Attribute) -> bool:
        with self._lock:
            stored = self._get(collection)
            if attribute.key in stored.attributes:
                raise Duplicate(f"Attribute '{attribute.key}' already exists", collection=collection, key=attribute.key)
            stored.attributes[attribute.key] = attribute
            return True

    def delete_attribute(self, collection: str, key: str) -> bool:
        with self._lock:
            stored = self._get(collection)
            if stored.attributes.pop(key, None) is None:
                return False
            for document in stored.documents.values():
                document.pop(key, None)
            return True

    def create_index(
        self,
        collection: str,
        key: str,
        type: IndexType,
        attributes: Sequence[str],
        lengths: Sequence[int] = (),
        orders: Sequence[OrderType] = (),
    ) -> bool:
        with self._lock:
            stored = self._get(collection)
            if key in stored.indexes:
                raise Duplicate(f"Index '{key}' already exists", collection=collection, key=key)
            index = _StoredIndex(key, type, tuple(attributes))
            if type == IndexType.UNIQUE:
                seen: set[tuple[Any, ...]] = set()
                for document in stored.documents.values():
                    values = _index_values(index, document)
                    if values is None:
                        continue
                    if values in seen:
                        raise Duplicate(
                            f"Existing documents violate unique index '{key}'",
                            collection=collection,
                            key=key,
                        )
                    seen.add(values)
            stored.indexes[key] = index
            return True

    def delete_index(self, collection: str, key: str) -> bool:
        with self._lock:
            return self._get(collection).indexes.pop(key, None) is not None

    # Documents

    def create_document(self, collection: str, document: Document) -> Document:
        with self._lock:
            self._maybe_fail()
            stored = self._get(collection)
            document_id = document.get_id()
            if document_id in stored.documents:
                raise Duplicate(
                    f"Document '{document_id}' already exists in '{collection}'",
                    collection=collection,
                    key="$id",
                )
            data = copy.deepcopy(document.get_array_copy())
            self._check_unique(collection, stored, data)
            self._sequence += 1
            data["$internalId"] = self._sequence
            stored.documents[document_id] = data
            return Document(copy.deepcopy(data))

    def update_document(self, collection: str, document: Document) -> Document:
        with self._lock:
            self._maybe_fail()
            stored = self._get(collection)
            document_id = document.get_id()
            current = stored.documents.get(document_id)
            if current is None:
                raise NotFound(
                    f"Document '{document_id}' not found in '{collection}'",
                    resource_type="document",
                    resource_id=document_id,
                    collection=collection,
                )
            data = copy.deepcopy(document.get_array_copy())
            data["$internalId"] = current.get("$internalId")
            self._check_unique(collection, stored, data, exclude=document_id)
            stored.documents[document_id] = data
            return Document(copy.deepcopy(data))

    def delete_document(self, collection: str, document_id: str) -> bool:
        with self._lock:
            self._maybe_fail()
            return self._get(collection).documents.pop(document_id, None) is not None

    def get_document(self, collection: str, document_id: str) -> Document:
        with self._lock:
            data = self._get(collection).documents.get(document_id)
            return Document(copy.deepcopy(data)) if data is not None else Document()

    def _check_unique(
        self,
        collection: str,
        stored: InMemoryCollection,
        data: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        for index in stored.indexes.values():
            if index.type != IndexType.UNIQUE:
                continue
            values = _index_values(index, data)
            if values is None:
                continue
            for other_id, other in stored.documents.items():
                if other_id != exclude and _index_values(index, other) == values:
                    raise Duplicate(
                        f"Document violates unique index '{index.key}' in '{collection}'",
                        collection=collection,
                        key=index.key,
                    )

    # Queries

    def find(
        self,
        collection: str,
        queries: Sequence[Query] = (),
        limit: int | None = 25,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType] = (),
        cursor: Document | None = None,
        cursor_direction: str = CURSOR_AFTER,
        roles: Sequence[str] | None = None,
    ) -> list[Document]:
        with self._lock:
            stored = self._get(collection)
            matches = [d for d in stored.documents.values() if self._visible(d, queries, roles)]

        orders = list(order_directions(order_attributes, order_types))
        compare = functools.partial(_compare, orders)
        matches.sort(key=functools.cmp_to_key(compare))

        if cursor is not None:
            if cursor_direction == CURSOR_BEFORE:
                matches = [d for d in matches if compare(d, cursor) < 0]
                matches.reverse()
            else:
                matches = [d for d in matches if compare(d, cursor) > 0]

        end = None if limit is None else offset + limit
        page = matches[offset:end]
        if cursor is not None and cursor_direction == CURSOR_BEFORE:
            page.reverse()
        return [Document(copy.deepcopy(d)) for d in page]

    def count(
        self,
        collection: str,
        queries: Sequence[Query] = (),
        max: int | None = None,
        roles: Sequence[str] | None = None,
    ) -> int:
        with self._lock:
            stored = self._get(collection)
            total = sum(1 for d in stored.documents.values() if self._visible(d, queries, roles))
        if max is not None:
            return min(total, max)
        return total

    def _visible(
        self,
        document: dict[str, Any],
        queries: Sequence[Query],
        roles: Sequence[str] | None,
    ) -> bool:
        if roles is not None:
            allowed = roles_for_action(document.get("$permissions") or [], "read")
            if allowed.isdisjoint(roles):
                return False
        return all(_matches(document, q) for q in queries)

    # Test helpers

    def inject_failure(self, exception: Exception, after: int = 0) -> None:
        """Make a document write raise ``exception``.

        Args:
            exception: Error to raise
            after: Number of writes to let through first
        """
        self._fail_next = exception
        self._fail_after = after

    def get_document_count(self, collection: str) -> int:
        return len(self._get(collection).documents)


def _index_values(index: _StoredIndex, document: dict[str, Any]) -> tuple[Any, ...] | None:
    values = tuple(document.get(a) for a in index.attributes)
    if any(v is None for v in values):
        return None
    return tuple(repr(v) if isinstance(v, (list, dict)) else v for v in values)


def _matches(document: dict[str, Any], query: Query) -> bool:
    value = document.get(query.attribute)
    method = query.method

    if method == q.TYPE_IS_NULL:
        return value is None
    if method == q.TYPE_IS_NOT_NULL:
        return value is not None
    if value is None:
        return False

    if method == q.TYPE_EQUAL:
        return value in query.values
    if method == q.TYPE_NOT_EQUAL:
        return value not in query.values
    if method == q.TYPE_LESSER:
        return value < query.value
    if method == q.TYPE_LESSER_EQUAL:
        return value <= query.value
    if method == q.TYPE_GREATER:
        return value > query.value
    if method == q.TYPE_GREATER_EQUAL:
        return value >= query.value
    if method == q.TYPE_BETWEEN:
        return query.values[0] <= value <= query.values[1]
    if method == q.TYPE_CONTAINS:
        return isinstance(value, list) and any(v in value for v in query.values)
    if method == q.TYPE_SEARCH:
        terms = {t.lower() for t in _TOKEN.findall(str(query.value))}
        words = {t.lower() for t in _TOKEN.findall(str(value))}
        return bool(terms & words)
    raise ValueError(f"Unsupported query method: {method}")


def _compare(
    orders: list[tuple[str, OrderType]],
    left: dict[str, Any],
    right: dict[str, Any],
) -> int:
    for attribute, direction in orders:
        a, b = left.get(attribute), right.get(attribute)
        if a == b:
            continue
        # NULLs sort first ascending
        if a is None:
            result = -1
        elif b is None:
            result = 1
        else:
            result = -1 if a < b else 1
        return result if direction == OrderType.ASC else -result
    return 0
