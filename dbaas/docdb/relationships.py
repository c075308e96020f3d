"""
Relationship Resolver for DocDB.

This module owns everything that makes one document refer to another:
- Schema-time creation and removal of relationship attributes (both sides)
  and of the junction collections behind many-to-many relationships
- Write-time resolution of relationship values (id strings or embedded
  documents) into stored ids, and maintenance of the opposite side
- Read-time expansion of stored ids into nested documents
- onDelete policies (restrict, setNull, cascade)

Storage per side:
    oneToOne / manyToOne   the related document id
    oneToMany              the list of related document ids
    manyToMany             nothing; one junction record per linked pair

Invariants:
    - Two-way relationships stay symmetric: after any write, A refers to B
      through key K iff B refers to A through the reverse key
    - Reverse-side and junction writes run in elevated mode
    - Junction records are unique per (left, right) pair; linking twice is
      a no-op
    - Expansion never follows more than max_depth hops and never revisits a
      document already on the current path

How to change safely:
    - Keep expand() iterative; relationship graphs may be deep or cyclic
    - Any new relation type needs storage in both adapters, prepare_write,
      sync, and on_delete support
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Optional

from .document import Document, ids_of
from .errors import Duplicate, NotFound, Restricted, Structure
from .helpers import ID, UNIQUE, now
from .query.query import Query
from .schema.types import (
    Attribute,
    AttributeType,
    Collection,
    Index,
    IndexType,
    OnDelete,
    OrderType,
    RelationshipOptions,
    RelationSide,
    RelationType,
)

if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)

JUNCTION_PREFIX = "_junction_"
JUNCTION_LEFT = "left"
JUNCTION_RIGHT = "right"

JUNCTION_ATTRIBUTES = (
    Attribute(JUNCTION_LEFT, AttributeType.STRING, size=36, required=True),
    Attribute(JUNCTION_RIGHT, AttributeType.STRING, size=36, required=True),
)
JUNCTION_INDEXES = (
    Index("pair", IndexType.UNIQUE, (JUNCTION_LEFT, JUNCTION_RIGHT)),
    Index("by_right", IndexType.KEY, (JUNCTION_RIGHT,)),
)

DEFAULT_MAX_DEPTH = 3


def junction_collection_id(collection_id: str, key: str) -> str:
    """Junction collection backing relationship ``key`` of ``collection_id``."""
    return f"{JUNCTION_PREFIX}{collection_id}_{key}"


def junction_document_id(left: str, right: str) -> str:
    """Deterministic junction record id for a linked pair."""
    digest = hashlib.sha1(f"{left}\x00{right}".encode("utf-8")).hexdigest()
    return digest[:32]


@dataclass
class LinkChange:
    """Ids a write adds to and removes from one relationship attribute."""

    attribute: Attribute
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def touched(self) -> list[str]:
        return self.added + self.removed


class RelationshipResolver:
    """Relationship maintenance for one Database (one role context).

    Thread safety:
        Holds no mutable state of its own; concurrency follows the adapter.

    Example:
        >>> resolver = RelationshipResolver(database)
        >>> resolver.create_relationship("person", "library", RelationType.ONE_TO_ONE)
        >>> resolver.expand(person_collection, person_document)
    """

    def __init__(self, database: Database, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.database = database
        self.max_depth = max_depth

    @property
    def adapter(self):
        return self.database.adapter

    @property
    def schema(self):
        return self.database.schema

    @property
    def cache(self):
        return self.database.cache

    @property
    def authorization(self):
        return self.database.authorization

    # Schema

    def create_relationship(
        self,
        collection_id: str,
        related_collection_id: str,
        relation_type: RelationType,
        two_way: bool = False,
        key: Optional[str] = None,
        two_way_key: Optional[str] = None,
        on_delete: OnDelete = OnDelete.RESTRICT,
    ) -> Attribute:
        """Create a relationship attribute (and its mirror when two-way).

        Args:
            collection_id: Owning (parent) collection
            related_collection_id: Collection on the other side
            relation_type: Cardinality seen from the owning collection
            two_way: Whether the related collection gets a mirror attribute
            key: Attribute key on the owning side (default: related id)
            two_way_key: Mirror key (default: owning collection id)
            on_delete: Policy applied to related documents on delete

        Returns:
            The owning-side attribute

        Raises:
            NotFound: If either collection doesn't exist
            Duplicate: If either key is already used
        """
        collection = self.schema.get(collection_id)
        related = self.schema.get(related_collection_id)
        key = key or related.id
        two_way_key = two_way_key or collection.id

        if collection.get_attribute(key) is not None:
            raise Duplicate(
                f"Attribute '{key}' already exists in '{collection.id}'",
                collection=collection.id,
                key=key,
            )
        if two_way:
            if collection.id == related.id and key == two_way_key:
                raise Duplicate(
                    f"Relationship key and reverse key are both '{key}'",
                    collection=collection.id,
                    key=key,
                )
            if related.get_attribute(two_way_key) is not None:
                raise Duplicate(
                    f"Related attribute '{two_way_key}' already exists in '{related.id}'",
                    collection=related.id,
                    key=two_way_key,
                )

        junction = None
        if relation_type.uses_junction:
            junction = junction_collection_id(collection.id, key)
            self.schema.create(
                Collection(
                    id=junction,
                    attributes=JUNCTION_ATTRIBUTES,
                    indexes=JUNCTION_INDEXES,
                    document_security=False,
                ),
                internal=True,
            )

        parent = Attribute(
            key,
            AttributeType.RELATIONSHIP,
            options=RelationshipOptions(
                related_collection=related.id,
                relation_type=relation_type,
                two_way=two_way,
                two_way_key=two_way_key,
                on_delete=on_delete,
                side=RelationSide.PARENT,
                junction_collection=junction,
            ),
        )
        child = Attribute(
            two_way_key,
            AttributeType.RELATIONSHIP,
            options=RelationshipOptions(
                related_collection=collection.id,
                relation_type=relation_type.reverse,
                two_way=True,
                two_way_key=key,
                on_delete=on_delete,
                side=RelationSide.CHILD,
                junction_collection=junction,
            ),
        )

        try:
            self.schema.add_attribute(collection.id, parent)
        except Exception:
            if junction:
                self.schema.delete(junction)
            raise

        if two_way:
            try:
                self.schema.add_attribute(related.id, child)
            except Exception:
                self.schema.remove_attribute(collection.id, key)
                if junction:
                    self.schema.delete(junction)
                raise

        self.cache.purge_collection(collection.id)
        self.cache.purge_collection(related.id)
        logger.info(
            "Created relationship",
            extra={
                "collection": collection.id,
                "related_collection": related.id,
                "type": relation_type.value,
                "key": key,
                "two_way": two_way,
                "two_way_key": two_way_key,
                "on_delete": on_delete.value,
            },
        )
        return parent

    def delete_relationship(self, collection_id: str, key: str) -> bool:
        """Remove a relationship from both sides and drop its junction.

        Raises:
            NotFound: If the collection or relationship doesn't exist
        """
        collection = self.schema.get(collection_id)
        attribute = collection.get_attribute(key)
        if attribute is None or not attribute.is_relationship:
            raise NotFound(
                f"Relationship '{key}' not found in '{collection_id}'",
                resource_type="relationship",
                resource_id=key,
                collection=collection_id,
            )
        options = attribute.relationship

        if options.two_way:
            related = self.schema.find(options.related_collection)
            if related is not None and related.get_attribute(options.two_way_key) is not None:
                self.schema.remove_attribute(related.id, options.two_way_key)
        self.schema.remove_attribute(collection.id, key)
        if options.junction_collection and self.schema.exists(options.junction_collection):
            self.schema.delete(options.junction_collection)

        self.cache.purge_collection(options.related_collection)
        logger.info(
            "Deleted relationship",
            extra={"collection": collection_id, "key": key, "two_way": options.two_way},
        )
        return True

    # Writes

    def prepare_write(
        self,
        collection: Collection,
        document: Document,
        previous: Optional[Document] = None,
        keys: Optional[Iterable[str]] = None,
    ) -> list[LinkChange]:
        """Normalize relationship values of ``document`` to stored form.

        Embedded documents are created or updated (elevated) before the
        owning write; id strings must refer to existing documents. Values of
        junction-backed attributes are removed from ``document`` and returned
        as link changes instead.

        Args:
            collection: Owning collection
            document: Document about to be written (mutated in place)
            previous: Stored version for updates, None for creates
            keys: When set, only these relationship keys are resolved (the
                keys an update actually changes)

        Returns:
            One LinkChange per relationship attribute present in ``document``

        Raises:
            Structure: If a value has the wrong cardinality or shape
            NotFound: If a referenced document doesn't exist
            Duplicate: If a one-to-one target is linked to another document
        """
        changes: list[LinkChange] = []
        for attribute in collection.get_relationships():
            if attribute.key not in document or (keys is not None and attribute.key not in keys):
                continue
            options = attribute.relationship
            related = self.schema.get(options.related_collection)
            value = document[attribute.key]

            if options.relation_type.is_list:
                if value is None:
                    value = []
                if not isinstance(value, list):
                    raise Structure(
                        f"Relationship '{attribute.key}' must be a list, got {type(value).__name__}",
                        collection=collection.id,
                        key=attribute.key,
                        value=value,
                    )
                ids = list(dict.fromkeys(self._resolve(related, attribute, item) for item in value))
                if options.relation_type.uses_junction:
                    before = self.junction_ids(attribute, document.get_id()) if previous else []
                    del document[attribute.key]
                else:
                    before = ids_of(previous.get(attribute.key) or []) if previous else []
                    document[attribute.key] = ids
            else:
                if isinstance(value, list):
                    raise Structure(
                        f"Relationship '{attribute.key}' holds a single document, got a list",
                        collection=collection.id,
                        key=attribute.key,
                        value=value,
                    )
                new_id = self._resolve(related, attribute, value) if value is not None else None
                document[attribute.key] = new_id
                ids = [new_id] if new_id else []
                before = ids_of([previous.get(attribute.key)]) if previous else []

            change = LinkChange(
                attribute,
                added=[i for i in ids if i not in before],
                removed=[i for i in before if i not in ids],
            )
            if options.relation_type == RelationType.ONE_TO_ONE and options.two_way:
                self._check_one_to_one(related, attribute, document.get_id(), change.added)
            changes.append(change)
        return changes

    def _resolve(self, related: Collection, attribute: Attribute, item: Any) -> str:
        """Turn one relationship value into a related document id."""
        options = attribute.relationship

        if isinstance(item, str):
            if not ID.is_valid(item):
                raise Structure(
                    f"Relationship '{attribute.key}' got invalid document id {item!r}",
                    collection=related.id,
                    key=attribute.key,
                    value=item,
                )
            with self.authorization.skip():
                exists = not self.adapter.get_document(related.id, item).is_empty()
            if not exists:
                raise NotFound(
                    f"Related document '{item}' not found in '{related.id}'",
                    resource_type="document",
                    resource_id=item,
                    collection=related.id,
                )
            return item

        if isinstance(item, dict):
            payload = Document(item)
            if options.two_way:
                payload.pop(options.two_way_key, None)
            item_id = payload.get_id()
            with self.authorization.skip():
                existing = None
                if item_id and item_id != UNIQUE and ID.is_valid(item_id):
                    existing = self.database._load(related, item_id)
                if existing is not None:
                    stored = self.database._update(related, existing, payload)
                else:
                    stored = self.database._create(related, payload)
            return stored.get_id()

        raise Structure(
            f"Relationship '{attribute.key}' values must be document ids or documents, "
            f"got {type(item).__name__}",
            collection=related.id,
            key=attribute.key,
            value=item,
        )

    def _check_one_to_one(
        self,
        related: Collection,
        attribute: Attribute,
        document_id: str,
        added: list[str],
    ) -> None:
        options = attribute.relationship
        for related_id in added:
            target = self.adapter.get_document(related.id, related_id)
            linked = target.get(options.two_way_key)
            if linked and linked != document_id:
                raise Duplicate(
                    f"Document '{related_id}' in '{related.id}' is already related to "
                    f"'{linked}' through '{options.two_way_key}'",
                    collection=related.id,
                    key=options.two_way_key,
                )

    def sync(self, collection: Collection, document: Document, changes: list[LinkChange]) -> None:
        """Apply link changes to the other side after the owning write."""
        document_id = document.get_id()
        with self.authorization.skip():
            for change in changes:
                if not change.touched:
                    continue
                options = change.attribute.relationship

                if options.relation_type.uses_junction:
                    for related_id in change.added:
                        self._link(change.attribute, document_id, related_id)
                    for related_id in change.removed:
                        self._unlink(change.attribute, document_id, related_id)
                elif options.two_way:
                    for related_id in change.removed:
                        self._detach(collection, change.attribute, document_id, related_id)
                    for related_id in change.added:
                        self._attach(collection, change.attribute, document_id, related_id)

                for related_id in change.touched:
                    self.database._touch(options.related_collection, related_id)

    def _attach(
        self,
        collection: Collection,
        attribute: Attribute,
        document_id: str,
        related_id: str,
    ) -> None:
        options = attribute.relationship
        target = self.adapter.get_document(options.related_collection, related_id)
        if target.is_empty():
            return
        reverse_key = options.two_way_key

        if options.relation_type.reverse.is_list:
            current = ids_of(target.get(reverse_key) or [])
            if document_id in current:
                return
            self._write_reverse(options.related_collection, target, reverse_key, current + [document_id])
            return

        linked = target.get(reverse_key)
        if linked == document_id:
            return
        if linked and options.relation_type == RelationType.ONE_TO_MANY:
            # The child moves; drop it from its previous owner's list.
            owner = self.adapter.get_document(collection.id, linked)
            if not owner.is_empty():
                remaining = [i for i in ids_of(owner.get(attribute.key) or []) if i != related_id]
                self._write_reverse(collection.id, owner, attribute.key, remaining)
        self._write_reverse(options.related_collection, target, reverse_key, document_id)

    def _detach(
        self,
        collection: Collection,
        attribute: Attribute,
        document_id: str,
        related_id: str,
    ) -> None:
        options = attribute.relationship
        target = self.adapter.get_document(options.related_collection, related_id)
        if target.is_empty():
            return
        reverse_key = options.two_way_key

        if options.relation_type.reverse.is_list:
            current = ids_of(target.get(reverse_key) or [])
            if document_id not in current:
                return
            remaining = [i for i in current if i != document_id]
            self._write_reverse(options.related_collection, target, reverse_key, remaining)
        elif target.get(reverse_key) == document_id:
            self._write_reverse(options.related_collection, target, reverse_key, None)

    def _write_reverse(self, collection_id: str, target: Document, key: str, value: Any) -> None:
        target[key] = value
        target["$updatedAt"] = now()
        self.adapter.update_document(collection_id, target)
        self.database._touch(collection_id, target.get_id())

    # Junction records

    def _junction(self, attribute: Attribute) -> str:
        junction = attribute.relationship.junction_collection
        if not junction:
            raise Structure(f"Relationship '{attribute.key}' has no junction collection", key=attribute.key)
        return junction

    def _pair(self, attribute: Attribute, document_id: str, related_id: str) -> tuple[str, str]:
        if attribute.relationship.side == RelationSide.PARENT:
            return document_id, related_id
        return related_id, document_id

    def _link(self, attribute: Attribute, document_id: str, related_id: str) -> None:
        junction = self._junction(attribute)
        left, right = self._pair(attribute, document_id, related_id)
        record_id = junction_document_id(left, right)
        if not self.adapter.get_document(junction, record_id).is_empty():
            return
        timestamp = now()
        record = Document(
            {
                "$id": record_id,
                "$collection": junction,
                "$createdAt": timestamp,
                "$updatedAt": timestamp,
                "$permissions": [],
                JUNCTION_LEFT: left,
                JUNCTION_RIGHT: right,
            }
        )
        try:
            self.adapter.create_document(junction, record)
        except Duplicate:
            logger.debug("Junction record already exists", extra={"junction": junction, "id": record_id})

    def _unlink(self, attribute: Attribute, document_id: str, related_id: str) -> None:
        left, right = self._pair(attribute, document_id, related_id)
        self.adapter.delete_document(self._junction(attribute), junction_document_id(left, right))

    def junction_ids(self, attribute: Attribute, document_id: str) -> list[str]:
        """Related ids linked to ``document_id`` through junction records."""
        options = attribute.relationship
        if options.side == RelationSide.PARENT:
            own, other = JUNCTION_LEFT, JUNCTION_RIGHT
        else:
            own, other = JUNCTION_RIGHT, JUNCTION_LEFT
        records = self.adapter.find(
            self._junction(attribute),
            [Query.equal(own, document_id)],
            limit=None,
            order_attributes=["$createdAt"],
            order_types=[OrderType.ASC],
        )
        return [r[other] for r in records]

    def related_ids(self, attribute: Attribute, document: Document) -> list[str]:
        """Ids currently related to ``document`` through ``attribute``."""
        if attribute.relationship.relation_type.uses_junction:
            return self.junction_ids(attribute, document.get_id())
        value = document.get(attribute.key)
        if isinstance(value, list):
            return ids_of(value)
        return ids_of([value])

    # Deletes

    def on_delete(
        self,
        collection: Collection,
        document: Document,
        visited: set[tuple[str, str]],
    ) -> None:
        """Apply onDelete policies before ``document`` is deleted.

        A manyToOne side never blocks or cascades; deleting one of many
        children only unlinks it. Junction records of the document are
        always removed, and cascade over manyToMany removes only those
        records, never the related documents.

        Args:
            collection: Collection of the document being deleted
            document: Stored document being deleted
            visited: (collection, id) pairs already being deleted in this
                cascade; they are never deleted twice

        Raises:
            Restricted: If a restrict relationship still has related documents
        """
        document_id = document.get_id()
        for attribute in collection.get_relationships():
            options = attribute.relationship
            linked = self.related_ids(attribute, document)
            related_ids = [i for i in linked if (options.related_collection, i) not in visited]
            policy = options.on_delete
            if options.relation_type == RelationType.MANY_TO_ONE:
                policy = OnDelete.SET_NULL

            if related_ids and policy == OnDelete.RESTRICT:
                raise Restricted(
                    f"Cannot delete '{document_id}' from '{collection.id}': related documents "
                    f"exist through '{attribute.key}'",
                    collection=collection.id,
                    key=attribute.key,
                    document_id=document_id,
                )

            with self.authorization.skip():
                if options.relation_type.uses_junction:
                    for related_id in linked:
                        self._unlink(attribute, document_id, related_id)
                elif policy == OnDelete.CASCADE:
                    related = self.schema.get(options.related_collection)
                    for related_id in related_ids:
                        if (related.id, related_id) in visited:
                            continue
                        target = self.database._load(related, related_id)
                        if target is not None:
                            self.database._delete(related, target, visited)
                elif options.two_way:
                    for related_id in related_ids:
                        self._detach(collection, attribute, document_id, related_id)

            for related_id in linked:
                self.database._touch(options.related_collection, related_id)

    # Reads

    def expand(self, collection: Collection, document: Document) -> Document:
        """Replace stored relationship ids with related documents in place.

        Traversal is iterative. A relationship is left as ids when the hop
        count exceeds max_depth, when it points back through the attribute
        that was just followed, or when the target is already on the path.
        Related documents the active roles cannot read are dropped (None for
        single relationships).
        """
        if not collection.get_relationships():
            return document

        root_path = frozenset({(collection.id, document.get_id())})
        stack: list[tuple[Document, Collection, int, frozenset, Optional[tuple[str, str]]]] = [
            (document, collection, 1, root_path, None)
        ]
        while stack:
            current, current_collection, depth, path, came_from = stack.pop()
            for attribute in current_collection.get_relationships():
                options = attribute.relationship
                ids = self.related_ids(attribute, current)

                back_reference = (
                    came_from is not None
                    and options.two_way
                    and came_from == (options.related_collection, options.two_way_key)
                )
                if depth > self.max_depth or back_reference:
                    current[attribute.key] = ids if options.relation_type.is_list else (ids[0] if ids else None)
                    continue

                related = self.schema.get(options.related_collection)
                expanded: list[Any] = []
                for related_id in ids:
                    if (related.id, related_id) in path:
                        expanded.append(related_id)
                        continue
                    target = self.database._read(related, related_id)
                    if target is None:
                        continue
                    expanded.append(target)
                    stack.append(
                        (
                            target,
                            related,
                            depth + 1,
                            path | {(related.id, related_id)},
                            (current_collection.id, attribute.key),
                        )
                    )

                if options.relation_type.is_list:
                    current[attribute.key] = expanded
                else:
                    current[attribute.key] = expanded[0] if expanded else None
        return document
