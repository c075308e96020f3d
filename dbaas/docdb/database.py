"""
Database facade for DocDB.

The Database is the only entry point hosts call. It wires the components
together for one role context:

    Database
      ├── SchemaStore          collection definitions (shared)
      ├── Cache                raw documents and metadata (shared)
      ├── Adapter              backend storage (shared)
      ├── Authorization        active roles of this request (owned)
      ├── RelationshipResolver
      ├── QueryEngine
      └── IndexManager

Write path (create/update):
    1. Resolve the collection and check the action against the active roles
    2. Assign identity and timestamps; normalize datetimes; apply defaults
    3. Validate everything except relationships (no backend writes yet)
    4. Resolve relationship values (embedded documents are written here)
    5. Validate the stored form, write through the adapter
    6. Sync the other side of two-way and many-to-many relationships
    7. Purge cache entries for every touched document once the transaction
       has committed or rolled back

Invariants:
    - Steps 1-3 raise before any backend write
    - Each public write runs inside adapter.transaction(); on adapters
      without transactions a failed cascade leaves earlier writes in place
    - Cached documents are raw (unexpanded) and role-independent
    - No cache reads or saves happen while a write transaction is open

How to change safely:
    - Keep public methods thin; behaviour lives in the components
    - New public reads must call the Authorization Filter before returning
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Optional

from .adapters.base import CURSOR_AFTER, Adapter, create_adapter
from .auth.authorization import Authorization
from .auth.roles import Permission, Role, validate_permissions
from .cache.base import Cache, create_cache
from .config import DocDbConfig
from .document import Document
from .errors import Duplicate, Limit, NotFound, Structure
from .helpers import ID, UNIQUE, normalize_datetime, now
from .indexes import IndexManager
from .query.engine import QueryEngine
from .query.query import Query
from .relationships import RelationshipResolver
from .schema.store import SchemaStore
from .schema.structure import apply_defaults, validate_or_raise
from .schema.types import (
    Attribute,
    AttributeType,
    Collection,
    Index,
    IndexType,
    OnDelete,
    OrderType,
    RelationType,
)

logger = logging.getLogger(__name__)

# Keys a caller can't change on update.
_IMMUTABLE_KEYS = ("$id", "$internalId", "$collection", "$createdAt", "$updatedAt")


class Database:
    """Backend-agnostic document database.

    Thread safety:
        Adapter, cache, and schema store may be shared across threads. The
        Authorization context is per instance; use for_roles() to get an
        instance per request.

    Example:
        >>> db = Database(InMemoryAdapter())
        >>> db.create_collection("city", attributes=[
        ...     Attribute("name", AttributeType.STRING, size=64),
        ... ], permissions=[Permission.create("any"), Permission.read("any")])
        >>> db.create_document("city", {"$id": "paris", "name": "Paris"})
        >>> db.get_document("city", "paris")["name"]
        'Paris'
    """

    def __init__(
        self,
        adapter: Adapter,
        cache: Optional[Cache] = None,
        config: Optional[DocDbConfig] = None,
        authorization: Optional[Authorization] = None,
        schema: Optional[SchemaStore] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or DocDbConfig(namespace=adapter.namespace)
        self.cache = cache or Cache(None, namespace=adapter.namespace)
        self.authorization = authorization or Authorization()
        if schema is None:
            schema = SchemaStore(adapter, self.cache)
            schema.bootstrap()
        self.schema = schema
        self.relationships = RelationshipResolver(self, max_depth=self.config.query.relation_max_depth)
        self.queries = QueryEngine(self)
        self.indexes = IndexManager(adapter, schema)
        # Per-thread set of (collection, id) keys written by the open write.
        self._local = threading.local()

    @classmethod
    def from_config(cls, config: DocDbConfig) -> Database:
        """Build adapter and cache from configuration."""
        config.validate()
        return cls(create_adapter(config), cache=create_cache(config), config=config)

    def for_roles(self, roles: Iterable[Role | str]) -> Database:
        """A Database sharing storage, cache, and schema with its own roles."""
        return Database(
            self.adapter,
            cache=self.cache,
            config=self.config,
            authorization=Authorization([str(r) for r in roles]),
            schema=self.schema,
        )

    # Collections

    def create_collection(
        self,
        id: str,
        attributes: Sequence[Attribute | dict[str, Any]] = (),
        indexes: Sequence[Index | dict[str, Any]] = (),
        permissions: Optional[Sequence[str]] = None,
        document_security: bool = True,
    ) -> Collection:
        """Create a collection.

        Args:
            id: Collection id
            attributes: Attribute definitions (relationships are added with
                create_relationship())
            indexes: Index definitions over ``attributes``
            permissions: Collection permissions (default: create("any"))
            document_security: Whether document permissions also grant access

        Raises:
            Structure: If the id, attributes, indexes, or permissions are invalid
            Duplicate: If the collection already exists
            Limit: If the definition exceeds adapter limits
        """
        if not ID.is_valid(id):
            raise Structure(f"Invalid collection id {id!r}", collection=id)
        if permissions is None:
            permissions = [Permission.create(Role.any())]
        errors = validate_permissions(list(permissions))
        if errors:
            raise Structure(
                f"Invalid permissions for collection '{id}': {'; '.join(errors)}",
                collection=id,
                key="$permissions",
                value=list(permissions),
                errors=errors,
            )

        try:
            built_attributes = tuple(a if isinstance(a, Attribute) else Attribute.from_dict(a) for a in attributes)
            built_indexes = tuple(i if isinstance(i, Index) else Index.from_dict(i) for i in indexes)
            collection = Collection(
                id=id,
                name=id,
                attributes=built_attributes,
                permissions=tuple(permissions),
                document_security=document_security,
            )
        except (KeyError, ValueError) as e:
            raise Structure(f"Invalid definition for collection '{id}': {e}", collection=id) from e

        for attribute in collection.attributes:
            if attribute.is_relationship:
                raise Structure(
                    f"Relationship '{attribute.key}' must be added with create_relationship()",
                    collection=id,
                    key=attribute.key,
                )
        for index in built_indexes:
            self.indexes.validate(collection, index)
            collection = collection.with_index(index)

        return self.schema.create(collection)

    def get_collection(self, id: str) -> Collection:
        """Raises NotFound if the collection doesn't exist."""
        return self.schema.get(id)

    def list_collections(self, limit: Optional[int] = None, offset: int = 0) -> list[Collection]:
        """User collections (junction collections are internal and hidden)."""
        return [c for c in self.schema.list() if not c.id.startswith("_")][offset:][:limit]

    def delete_collection(self, id: str) -> bool:
        """Drop a collection and every relationship that involves it.

        Raises:
            NotFound: If the collection doesn't exist
        """
        collection = self.schema.get(id)
        for attribute in collection.get_relationships():
            if self.schema.get(id).get_attribute(attribute.key) is not None:
                self.relationships.delete_relationship(id, attribute.key)
        for other in self.schema.list():
            if other.id == id or other.id.startswith("_"):
                continue
            for attribute in other.get_relationships():
                if attribute.relationship.related_collection == id:
                    self.relationships.delete_relationship(other.id, attribute.key)
        return self.schema.delete(id)

    # Attributes

    def create_attribute(
        self,
        collection: str,
        key: str,
        type: AttributeType | str,
        size: int = 0,
        required: bool = False,
        default: Any = None,
        signed: bool = True,
        array: bool = False,
        format: Optional[str] = None,
    ) -> Collection:
        """Add an attribute to an existing collection.

        Raises:
            Structure: If the definition is invalid
            Duplicate: If the key already exists
            Limit: If adapter limits would be exceeded
        """
        try:
            attribute_type = type if isinstance(type, AttributeType) else AttributeType.from_str(type)
            if attribute_type == AttributeType.RELATIONSHIP:
                raise ValueError("use create_relationship() for relationship attributes")
            attribute = Attribute(
                key,
                attribute_type,
                size=size,
                required=required,
                default=default,
                signed=signed,
                array=array,
                format=format,
            )
        except ValueError as e:
            raise Structure(f"Invalid attribute '{key}': {e}", collection=collection, key=key) from e
        return self.schema.add_attribute(collection, attribute)

    def delete_attribute(self, collection: str, key: str) -> Collection:
        """Drop an attribute (relationships are removed from both sides)."""
        attribute = self.schema.get(collection).get_attribute(key)
        if attribute is not None and attribute.is_relationship:
            self.relationships.delete_relationship(collection, key)
            return self.schema.get(collection)
        return self.schema.remove_attribute(collection, key)

    def create_relationship(
        self,
        collection: str,
        related_collection: str,
        type: RelationType | str,
        two_way: bool = False,
        key: Optional[str] = None,
        two_way_key: Optional[str] = None,
        on_delete: OnDelete | str = OnDelete.RESTRICT,
    ) -> Attribute:
        try:
            relation_type = type if isinstance(type, RelationType) else RelationType.from_str(type)
            policy = on_delete if isinstance(on_delete, OnDelete) else OnDelete(on_delete)
        except ValueError as e:
            raise Structure(f"Invalid relationship: {e}", collection=collection, key=key) from e
        if key is not None and not ID.is_valid(key):
            raise Structure(f"Invalid relationship key {key!r}", collection=collection, key=key)
        if two_way_key is not None and not ID.is_valid(two_way_key):
            raise Structure(f"Invalid reverse key {two_way_key!r}", collection=related_collection, key=two_way_key)
        return self.relationships.create_relationship(
            collection,
            related_collection,
            relation_type,
            two_way=two_way,
            key=key,
            two_way_key=two_way_key,
            on_delete=policy,
        )

    def delete_relationship(self, collection: str, key: str) -> bool:
        return self.relationships.delete_relationship(collection, key)

    # Indexes

    def create_index(
        self,
        collection: str,
        key: str,
        type: IndexType | str,
        attributes: Sequence[str],
        lengths: Sequence[int] = (),
        orders: Sequence[OrderType | str] = (),
    ) -> Collection:
        index = self.indexes.build(key, type, attributes, lengths, orders)
        return self.indexes.create_index(collection, index)

    def delete_index(self, collection: str, key: str) -> Collection:
        return self.indexes.delete_index(collection, key)

    # Documents

    def create_document(self, collection: str, document: dict[str, Any]) -> Document:
        """Create a document (and any embedded related documents).

        Raises:
            AuthorizationError: If no active role may create in the collection
            Structure: If the document doesn't match the schema
            Duplicate: If the id or a unique index value is taken
            NotFound: If the collection or a referenced document doesn't exist
            Limit: If an integer is outside the range the backend can store
        """
        target = self.schema.get(collection)
        self.authorization.check(target, "create")
        with self._write_scope():
            created = self._create(target, Document(document))
        logger.debug("Created document", extra={"collection": collection, "document_id": created.get_id()})
        return created

    def get_document(self, collection: str, id: str) -> Document:
        """Fetch a document with relationships expanded.

        Returns:
            The document, or an empty Document if it doesn't exist

        Raises:
            AuthorizationError: If the document exists but isn't readable
        """
        target = self.schema.get(collection)
        document = self._load(target, id) if ID.is_valid(id) else None
        if document is None:
            return Document()
        self.authorization.check(target, "read", document)
        return self.relationships.expand(target, document)

    def update_document(self, collection: str, id: str, document: dict[str, Any]) -> Document:
        """Merge ``document`` into the stored document.

        Raises:
            NotFound: If the document doesn't exist
            AuthorizationError: If no active role may update it
            Structure, Duplicate, Limit: As for create_document()
        """
        target = self.schema.get(collection)
        with self._write_scope():
            previous = self._load(target, id) if ID.is_valid(id) else None
            if previous is None:
                raise NotFound(
                    f"Document '{id}' not found in '{collection}'",
                    resource_type="document",
                    resource_id=id,
                    collection=collection,
                )
            self.authorization.check(target, "update", previous)
            updated = self._update(target, previous, Document(document))
        logger.debug("Updated document", extra={"collection": collection, "document_id": id})
        return updated

    def delete_document(self, collection: str, id: str) -> bool:
        """Delete a document, applying onDelete policies first.

        Raises:
            NotFound: If the document doesn't exist
            AuthorizationError: If no active role may delete it
            Restricted: If a restrict relationship still has related documents
        """
        target = self.schema.get(collection)
        with self._write_scope():
            document = self._load(target, id) if ID.is_valid(id) else None
            if document is None:
                raise NotFound(
                    f"Document '{id}' not found in '{collection}'",
                    resource_type="document",
                    resource_id=id,
                    collection=collection,
                )
            self.authorization.check(target, "delete", document)
            self._delete(target, document, set())
        logger.debug("Deleted document", extra={"collection": collection, "document_id": id})
        return True

    def find(
        self,
        collection: str,
        queries: Sequence[Query | str] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType | str] = (),
        cursor: Document | str | None = None,
        cursor_direction: str = CURSOR_AFTER,
    ) -> Iterator[Document]:
        """Query a collection. Returns a lazy, single-pass iterator."""
        return self.queries.find(
            self.schema.get(collection),
            queries,
            limit=limit,
            offset=offset,
            order_attributes=order_attributes,
            order_types=order_types,
            cursor=cursor,
            cursor_direction=cursor_direction,
        )

    def find_one(
        self,
        collection: str,
        queries: Sequence[Query | str] = (),
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType | str] = (),
    ) -> Document:
        """First matching document, or an empty Document."""
        results = self.find(
            collection,
            queries,
            limit=1,
            offset=offset,
            order_attributes=order_attributes,
            order_types=order_types,
        )
        return next(results, Document())

    def count(self, collection: str, queries: Sequence[Query | str] = (), max: Optional[int] = None) -> int:
        return self.queries.count(self.schema.get(collection), queries, max=max)

    # Internal document operations (no permission checks)

    @contextmanager
    def _write_scope(self) -> Iterator[None]:
        """Run a public write in one adapter transaction.

        Cache entries for every document the write touched are purged after
        the transaction ends, whether it committed or rolled back. Another
        reader can't re-cache the old value between our purge and COMMIT.
        """
        if self._in_write():
            yield
            return
        touched: set[tuple[str, str]] = set()
        self._local.touched = touched
        try:
            with self.adapter.transaction():
                yield
        finally:
            self._local.touched = None
            for collection_id, document_id in sorted(touched):
                self.cache.purge_document(collection_id, document_id)

    def _in_write(self) -> bool:
        return getattr(self._local, "touched", None) is not None

    def _touch(self, collection_id: str, document_id: str) -> None:
        """Mark a written document for cache invalidation."""
        touched = getattr(self._local, "touched", None)
        if touched is None:
            self.cache.purge_document(collection_id, document_id)
        else:
            touched.add((collection_id, document_id))

    def _load(self, collection: Collection, id: str) -> Optional[Document]:
        """Raw stored document through the cache, or None.

        Inside a write the cache is bypassed: it may still hold entries this
        write has changed, and uncommitted rows must never be cached.
        """
        if self._in_write():
            document = self.adapter.get_document(collection.id, id)
            return None if document.is_empty() else document
        cached = self.cache.load_document(collection.id, id)
        if cached is not None:
            return Document(cached)
        document = self.adapter.get_document(collection.id, id)
        if document.is_empty():
            return None
        self.cache.save_document(collection.id, document.get_array_copy())
        return document

    def _read(self, collection: Collection, id: str) -> Optional[Document]:
        """Raw stored document if the active roles may read it, else None."""
        document = self._load(collection, id)
        if document is None or not self.authorization.can_access(collection, "read", document):
            return None
        return document

    def _create(self, collection: Collection, document: Document) -> Document:
        document_id = document.get_id()
        if not document_id or document_id == UNIQUE:
            document["$id"] = ID.unique()
        elif not ID.is_valid(document_id):
            raise Structure(
                f"Invalid document id {document_id!r}",
                collection=collection.id,
                key="$id",
                value=document_id,
            )
        elif not self.adapter.get_document(collection.id, document_id).is_empty():
            raise Duplicate(
                f"Document '{document_id}' already exists in '{collection.id}'",
                collection=collection.id,
                key="$id",
            )

        timestamp = now()
        document.pop("$internalId", None)
        document["$collection"] = collection.id
        document["$createdAt"] = timestamp
        document["$updatedAt"] = timestamp
        document["$permissions"] = document.get_permissions()
        _normalize_datetimes(collection, document)
        apply_defaults(collection, document)

        self._preflight(collection, document)
        changes = self.relationships.prepare_write(collection, document)
        validate_or_raise(collection, document)

        created = self.adapter.create_document(collection.id, document)
        self.relationships.sync(collection, created, changes)
        self._touch(collection.id, created.get_id())
        return created

    def _update(self, collection: Collection, previous: Document, changes: Document) -> Document:
        document = previous.copy()
        for key, value in changes.items():
            if key in _IMMUTABLE_KEYS:
                continue
            document[key] = value
        document["$collection"] = collection.id
        document["$updatedAt"] = now()
        _normalize_datetimes(collection, document)

        self._preflight(collection, document)
        links = self.relationships.prepare_write(collection, document, previous, keys=set(changes))
        validate_or_raise(collection, document)

        updated = self.adapter.update_document(collection.id, document)
        self.relationships.sync(collection, updated, links)
        self._touch(collection.id, updated.get_id())
        return updated

    def _delete(self, collection: Collection, document: Document, visited: set[tuple[str, str]]) -> None:
        visited.add((collection.id, document.get_id()))
        self.relationships.on_delete(collection, document, visited)
        self.adapter.delete_document(collection.id, document.get_id())
        self._touch(collection.id, document.get_id())

    def _preflight(self, collection: Collection, document: Document) -> None:
        """Validate everything but relationship values before any write."""
        plain = Document(document)
        for attribute in collection.get_relationships():
            plain.pop(attribute.key, None)
        validate_or_raise(collection, plain)
        _check_integer_limit(collection, plain, self.adapter.get_limit_for_integer())


def _normalize_datetimes(collection: Collection, document: Document) -> None:
    for attribute in collection.attributes:
        if attribute.type != AttributeType.DATETIME or document.get(attribute.key) is None:
            continue
        value = document[attribute.key]
        try:
            if attribute.array and isinstance(value, list):
                document[attribute.key] = [normalize_datetime(v) for v in value]
            elif isinstance(value, str):
                document[attribute.key] = normalize_datetime(value)
        except (TypeError, ValueError):
            # Left as-is; structure validation reports it.
            continue


def _check_integer_limit(collection: Collection, document: Document, limit: int) -> None:
    """Raise Limit for integers the backend can't store (large unsigned values)."""
    for attribute in collection.attributes:
        if attribute.type != AttributeType.INTEGER or document.get(attribute.key) is None:
            continue
        value = document[attribute.key]
        for item in value if isinstance(value, list) else [value]:
            if isinstance(item, int) and not isinstance(item, bool) and item > limit:
                raise Limit(
                    f"Value for '{attribute.key}' exceeds the backend integer limit ({limit})",
                    collection=collection.id,
                    limit=limit,
                    actual=item,
                )
