"""
Index Manager for DocDB.

Creates and drops secondary indexes. The physical index is created through
the adapter first; the index is recorded in collection metadata only once
the adapter confirms it.

Invariants:
    - Index attributes exist in the collection (or are internal attributes)
    - Relationship attributes are never indexed directly
    - Fulltext indexes cover string attributes only
    - Index count stays within the adapter's limit
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .adapters.base import Feature
from .errors import DatabaseError, Duplicate, NotFound, Structure
from .schema.types import INTERNAL_ATTRIBUTES, AttributeType, Collection, Index, IndexType, OrderType

if TYPE_CHECKING:
    from .adapters.base import Adapter
    from .schema.store import SchemaStore

logger = logging.getLogger(__name__)


class IndexManager:
    """Index lifecycle on top of an adapter and the schema store."""

    def __init__(self, adapter: Adapter, schema: SchemaStore) -> None:
        self.adapter = adapter
        self.schema = schema

    def build(
        self,
        key: str,
        type: IndexType | str,
        attributes: Sequence[str],
        lengths: Sequence[int] = (),
        orders: Sequence[OrderType | str] = (),
    ) -> Index:
        """Build an Index definition from loose arguments.

        Raises:
            Structure: If the definition is malformed
        """
        try:
            return Index(
                key=key,
                type=type if isinstance(type, IndexType) else IndexType(type),
                attributes=tuple(attributes),
                lengths=tuple(lengths),
                orders=tuple(o if isinstance(o, OrderType) else OrderType(str(o).upper()) for o in orders),
            )
        except ValueError as e:
            raise Structure(f"Invalid index '{key}': {e}", key=key) from e

    def validate(self, collection: Collection, index: Index) -> None:
        """Check an index definition against a collection and the adapter.

        Raises:
            Duplicate: If the index key is already used
            NotFound: If an indexed attribute doesn't exist
            Structure: If an attribute can't be indexed this way
            DatabaseError: If the adapter doesn't support the index type
        """
        if collection.get_index(index.key) is not None:
            raise Duplicate(
                f"Index '{index.key}' already exists in '{collection.id}'",
                collection=collection.id,
                key=index.key,
            )

        if index.type == IndexType.FULLTEXT and not self.adapter.get_support(Feature.FULLTEXT_INDEX):
            raise DatabaseError("Fulltext indexes are not supported by this adapter", code="UNSUPPORTED")
        if index.type == IndexType.UNIQUE and not self.adapter.get_support(Feature.UNIQUE_INDEX):
            raise DatabaseError("Unique indexes are not supported by this adapter", code="UNSUPPORTED")

        for key in index.attributes:
            if key in INTERNAL_ATTRIBUTES:
                attribute_type = INTERNAL_ATTRIBUTES[key]
            else:
                attribute = collection.get_attribute(key)
                if attribute is None:
                    raise NotFound(
                        f"Attribute '{key}' not found in '{collection.id}'",
                        resource_type="attribute",
                        resource_id=key,
                        collection=collection.id,
                    )
                if attribute.is_relationship:
                    raise Structure(
                        f"Cannot index relationship attribute '{key}'",
                        collection=collection.id,
                        key=key,
                    )
                attribute_type = attribute.type
            if index.type == IndexType.FULLTEXT and attribute_type != AttributeType.STRING:
                raise Structure(
                    f"Fulltext index '{index.key}' requires string attributes, '{key}' is "
                    f"{attribute_type.value}",
                    collection=collection.id,
                    key=key,
                )

        self.schema.check_limits(collection.with_index(index))

    def create_index(self, collection_id: str, index: Index) -> Collection:
        """Create the physical index, then record it in metadata.

        Raises:
            NotFound, Duplicate, Structure, Limit: See validate()
            DatabaseError: If the adapter doesn't confirm the index
        """
        collection = self.schema.get(collection_id)
        self.validate(collection, index)

        created = self.adapter.create_index(
            collection_id,
            index.key,
            index.type,
            index.attributes,
            index.lengths,
            index.orders,
        )
        if not created:
            raise DatabaseError(f"Adapter failed to create index '{index.key}' in '{collection_id}'")

        updated = self.schema.add_index(collection_id, index)
        logger.info(
            "Created index",
            extra={
                "collection": collection_id,
                "key": index.key,
                "type": index.type.value,
                "attributes": list(index.attributes),
            },
        )
        return updated

    def delete_index(self, collection_id: str, key: str) -> Collection:
        """Drop a physical index and its metadata.

        Raises:
            NotFound: If the collection or index doesn't exist
        """
        collection = self.schema.get(collection_id)
        if collection.get_index(key) is None:
            raise NotFound(
                f"Index '{key}' not found in '{collection_id}'",
                resource_type="index",
                resource_id=key,
                collection=collection_id,
            )
        self.adapter.delete_index(collection_id, key)
        updated = self.schema.remove_index(collection_id, key)
        logger.info("Deleted index", extra={"collection": collection_id, "key": key})
        return updated
