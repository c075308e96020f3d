"""
Schema Store for DocDB.

The SchemaStore is the authority for collection definitions. It provides:
- Creation and removal of collections (physical storage + metadata)
- Attribute addition and removal
- Index metadata bookkeeping (physical indexes belong to the IndexManager)
- Cached lookup of collection definitions

Collection definitions are persisted as documents of the reserved
``_metadata`` collection through the same adapter that stores user data,
so a backend carries its own schema.

Invariants:
    - Every mutation purges the collection's cache entry before returning
    - Attribute and index counts and the estimated row width never exceed the
      adapter's declared limits
    - Physical storage is created before metadata is written; metadata is
      removed only after physical storage is dropped
    - Reserved collection ids (leading underscore) are only created internally

How to change safely:
    - Keep the metadata document layout in sync with Collection.to_dict()
    - Never rewrite existing attributes in place; drop and add instead
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING

from ..document import Document
from ..errors import Duplicate, Limit, NotFound
from ..helpers import ID, now
from .types import Attribute, AttributeType, Collection, Index

if TYPE_CHECKING:
    from ..adapters.base import Adapter
    from ..cache.base import Cache

logger = logging.getLogger(__name__)

METADATA = "_metadata"

METADATA_COLLECTION = Collection(
    id=METADATA,
    name="Collections",
    attributes=(
        Attribute("name", AttributeType.STRING, size=256, required=True),
        Attribute("attributes", AttributeType.STRING, size=1_000_000, array=True),
        Attribute("indexes", AttributeType.STRING, size=1_000_000, array=True),
        Attribute("documentSecurity", AttributeType.BOOLEAN, required=True),
    ),
)


class SchemaStore:
    """Persistent, cached registry of collection definitions.

    Thread safety:
        Mutations are serialized by a re-entrant lock. Reads go through the
        cache and the adapter without locking.

    Example:
        >>> store = SchemaStore(adapter, cache)
        >>> store.bootstrap()
        >>> store.create(Collection(id="city"))
        >>> store.get("city").id
        'city'
    """

    def __init__(self, adapter: Adapter, cache: Cache) -> None:
        self.adapter = adapter
        self.cache = cache
        self._lock = threading.RLock()

    def bootstrap(self) -> None:
        """Create the metadata collection if the backend lacks it."""
        with self._lock:
            if not self.adapter.collection_exists(METADATA):
                self.adapter.create_collection(METADATA, METADATA_COLLECTION.attributes, ())
                logger.info("Created metadata collection", extra={"namespace": self.adapter.namespace})

    # Lookup

    def find(self, collection_id: str) -> Collection | None:
        """Return the collection definition or None if it doesn't exist."""
        if collection_id == METADATA:
            return METADATA_COLLECTION

        cached = self.cache.load_document(METADATA, collection_id)
        if cached is not None:
            return Collection.from_dict(cached)

        document = self.adapter.get_document(METADATA, collection_id)
        if document.is_empty():
            return None
        self.cache.save_document(METADATA, document.get_array_copy())
        return Collection.from_dict(document)

    def get(self, collection_id: str) -> Collection:
        """Return the collection definition.

        Raises:
            NotFound: If the collection doesn't exist
        """
        collection = self.find(collection_id)
        if collection is None:
            raise NotFound(
                f"Collection '{collection_id}' not found",
                resource_type="collection",
                resource_id=collection_id,
            )
        return collection

    def exists(self, collection_id: str) -> bool:
        return self.find(collection_id) is not None

    def list(self, limit: int | None = None, offset: int = 0) -> list[Collection]:
        documents = self.adapter.find(METADATA, (), limit=limit, offset=offset)
        return [Collection.from_dict(d) for d in documents]

    def __iter__(self) -> Iterator[Collection]:
        return iter(self.list())

    # Mutation

    def check_limits(self, collection: Collection) -> None:
        """Raise Limit if the definition exceeds the adapter's limits."""
        attribute_limit = self.adapter.get_limit_for_attributes()
        if attribute_limit and len(collection.attributes) > attribute_limit:
            raise Limit(
                f"Attribute limit of {attribute_limit} exceeded in '{collection.id}'",
                collection=collection.id,
                limit=attribute_limit,
                actual=len(collection.attributes),
            )

        index_limit = self.adapter.get_limit_for_indexes()
        if index_limit and len(collection.indexes) > index_limit:
            raise Limit(
                f"Index limit of {index_limit} exceeded in '{collection.id}'",
                collection=collection.id,
                limit=index_limit,
                actual=len(collection.indexes),
            )

        size_limit = self.adapter.get_document_size_limit()
        width = collection.row_width()
        if size_limit and width > size_limit:
            raise Limit(
                f"Document size limit of {size_limit} bytes exceeded in '{collection.id}' "
                f"(estimated {width} bytes)",
                collection=collection.id,
                limit=size_limit,
                actual=width,
            )

    def create(self, collection: Collection, internal: bool = False) -> Collection:
        """Create physical storage and metadata for a collection.

        Args:
            collection: Definition to create
            internal: Allow reserved ids (junction collections)

        Raises:
            ValueError: If the id is not a valid identifier
            Duplicate: If the collection already exists
            Limit: If the definition exceeds adapter limits
        """
        if not internal and not ID.is_valid(collection.id):
            raise ValueError(f"Invalid collection id '{collection.id}'")

        with self._lock:
            if self.exists(collection.id) or self.adapter.collection_exists(collection.id):
                raise Duplicate(
                    f"Collection '{collection.id}' already exists",
                    collection=collection.id,
                )
            self.check_limits(collection)

            self.adapter.create_collection(collection.id, collection.attributes, collection.indexes)
            timestamp = now()
            metadata = Document(collection.to_dict())
            metadata["$createdAt"] = timestamp
            metadata["$updatedAt"] = timestamp
            self.adapter.create_document(METADATA, metadata)
            self.cache.purge_document(METADATA, collection.id)

        logger.info(
            "Created collection",
            extra={
                "collection": collection.id,
                "attributes": len(collection.attributes),
                "indexes": len(collection.indexes),
            },
        )
        return collection

    def save(self, collection: Collection) -> Collection:
        """Persist a changed definition of an existing collection."""
        with self._lock:
            current = self.adapter.get_document(METADATA, collection.id)
            if current.is_empty():
                raise NotFound(
                    f"Collection '{collection.id}' not found",
                    resource_type="collection",
                    resource_id=collection.id,
                )
            metadata = Document(collection.to_dict())
            metadata["$createdAt"] = current.get_created_at()
            metadata["$updatedAt"] = now()
            self.adapter.update_document(METADATA, metadata)
            self.cache.purge_document(METADATA, collection.id)
        return collection

    def delete(self, collection_id: str) -> bool:
        """Drop a collection's storage, cached documents, and metadata.

        Raises:
            NotFound: If the collection doesn't exist
        """
        with self._lock:
            self.get(collection_id)
            self.adapter.delete_collection(collection_id)
            self.adapter.delete_document(METADATA, collection_id)
            self.cache.purge_document(METADATA, collection_id)
            self.cache.purge_collection(collection_id)

        logger.info("Deleted collection", extra={"collection": collection_id})
        return True

    def add_attribute(self, collection_id: str, attribute: Attribute) -> Collection:
        """Append an attribute to a collection.

        Raises:
            NotFound: If the collection doesn't exist
            Duplicate: If the key is already used
            Limit: If adapter limits would be exceeded
        """
        with self._lock:
            collection = self.get(collection_id)
            if collection.get_attribute(attribute.key) is not None:
                raise Duplicate(
                    f"Attribute '{attribute.key}' already exists in '{collection_id}'",
                    collection=collection_id,
                    key=attribute.key,
                )
            updated = collection.with_attribute(attribute)
            self.check_limits(updated)
            self.adapter.create_attribute(collection_id, attribute)
            self.save(updated)

        logger.info(
            "Created attribute",
            extra={"collection": collection_id, "key": attribute.key, "type": attribute.type.value},
        )
        return updated

    def remove_attribute(self, collection_id: str, key: str) -> Collection:
        """Drop an attribute and every index that covers it.

        Raises:
            NotFound: If the collection or attribute doesn't exist
        """
        with self._lock:
            collection = self.get(collection_id)
            if collection.get_attribute(key) is None:
                raise NotFound(
                    f"Attribute '{key}' not found in '{collection_id}'",
                    resource_type="attribute",
                    resource_id=key,
                    collection=collection_id,
                )
            for index in collection.indexes:
                if key in index.attributes:
                    self.adapter.delete_index(collection_id, index.key)
                    collection = collection.without_index(index.key)
            self.adapter.delete_attribute(collection_id, key)
            updated = self.save(collection.without_attribute(key))
            self.cache.purge_collection(collection_id)

        logger.info("Deleted attribute", extra={"collection": collection_id, "key": key})
        return updated

    def add_index(self, collection_id: str, index: Index) -> Collection:
        """Record index metadata. The physical index must already exist."""
        with self._lock:
            collection = self.get(collection_id)
            return self.save(collection.with_index(index))

    def remove_index(self, collection_id: str, key: str) -> Collection:
        with self._lock:
            collection = self.get(collection_id)
            return self.save(collection.without_index(key))
