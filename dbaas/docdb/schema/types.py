"""
Core type definitions for the DocDB schema system.

This module defines the collection metadata model:
- Attribute: One typed attribute of a collection (scalar or relationship)
- RelationshipOptions: Extra metadata carried by relationship attributes
- Index: A key, unique, or fulltext index over attributes
- Collection: A named schema (attributes, indexes, permissions)

Each relationship attribute describes the relation from its own side:
the owning (parent) side of a ONE_TO_MANY relation carries ONE_TO_MANY,
the related (child) side of the same relation carries MANY_TO_ONE.

Invariants:
    - Attribute keys are unique within a collection
    - Relationship attributes always carry RelationshipOptions; others never do
    - Collections are immutable values; schema changes produce new Collections
    - Attributes, indexes, and relationships are appended, only removed by an
      explicit drop

How to change safely:
    - Add new attribute types at the end of AttributeType
    - Keep to_dict()/from_dict() keys stable; they are persisted metadata
    - New relation types need reverse/is_list/uses_junction entries

Example:
    >>> from dbaas.docdb.schema.types import Attribute, AttributeType
    >>> title = Attribute("title", AttributeType.STRING, size=128, required=True)
    >>> title.validate_value("Hello")
    (True, None)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any

from ..helpers import ID, parse_datetime

INTEGER_MAX = 2**63 - 1
INTEGER_MIN = -(2**63)
UNSIGNED_MAX = 2**64 - 1

# Strings longer than this are stored off-row and count as a pointer.
STRING_INLINE_MAX = 16381
OFF_ROW_WIDTH = 20
ID_WIDTH = 36 * 4 + 1


class AttributeType(Enum):
    """Supported attribute types."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "double"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    RELATIONSHIP = "relationship"

    @classmethod
    def from_str(cls, value: str) -> AttributeType:
        """Convert string representation to AttributeType.

        Raises:
            ValueError: If value is not a valid attribute type
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid attribute type '{value}'. Valid types: {valid}")


class RelationType(Enum):
    """Cardinality of a relationship, seen from the attribute's own side."""

    ONE_TO_ONE = "oneToOne"
    ONE_TO_MANY = "oneToMany"
    MANY_TO_ONE = "manyToOne"
    MANY_TO_MANY = "manyToMany"

    @classmethod
    def from_str(cls, value: str) -> RelationType:
        for kind in cls:
            if kind.value == value or kind.name == value.upper():
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid relation type '{value}'. Valid types: {valid}")

    @property
    def reverse(self) -> RelationType:
        """Relation type of the opposite side."""
        return _REVERSE[self]

    @property
    def is_list(self) -> bool:
        """Whether this side holds many related documents."""
        return self in (RelationType.ONE_TO_MANY, RelationType.MANY_TO_MANY)

    @property
    def uses_junction(self) -> bool:
        return self is RelationType.MANY_TO_MANY


_REVERSE = {
    RelationType.ONE_TO_ONE: RelationType.ONE_TO_ONE,
    RelationType.ONE_TO_MANY: RelationType.MANY_TO_ONE,
    RelationType.MANY_TO_ONE: RelationType.ONE_TO_MANY,
    RelationType.MANY_TO_MANY: RelationType.MANY_TO_MANY,
}


class RelationSide(Enum):
    PARENT = "parent"
    CHILD = "child"


class OnDelete(Enum):
    """What deleting a document does to the documents it relates to."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "setNull"


class IndexType(Enum):
    KEY = "key"
    UNIQUE = "unique"
    FULLTEXT = "fulltext"


class OrderType(Enum):
    ASC = "ASC"
    DESC = "DESC"


# Reserved attributes every collection exposes to queries and ordering.
INTERNAL_ATTRIBUTES: dict[str, AttributeType] = {
    "$id": AttributeType.STRING,
    "$createdAt": AttributeType.DATETIME,
    "$updatedAt": AttributeType.DATETIME,
}


@dataclass(frozen=True)
class RelationshipOptions:
    """Relationship metadata attached to a relationship attribute.

    Attributes:
        related_collection: Collection id on the other side
        relation_type: Cardinality from this attribute's side
        two_way: Whether the other side carries a mirror attribute
        two_way_key: Key of the mirror attribute (set even when one-way)
        on_delete: Policy applied to related documents on delete
        side: PARENT on the collection that declared the relationship
        junction_collection: Junction collection id (MANY_TO_MANY only)
    """

    related_collection: str
    relation_type: RelationType
    two_way: bool = False
    two_way_key: str = ""
    on_delete: OnDelete = OnDelete.RESTRICT
    side: RelationSide = RelationSide.PARENT
    junction_collection: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "relatedCollection": self.related_collection,
            "relationType": self.relation_type.value,
            "twoWay": self.two_way,
            "twoWayKey": self.two_way_key,
            "onDelete": self.on_delete.value,
            "side": self.side.value,
        }
        if self.junction_collection:
            result["junctionCollection"] = self.junction_collection
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationshipOptions:
        return cls(
            related_collection=data["relatedCollection"],
            relation_type=RelationType.from_str(data["relationType"]),
            two_way=data.get("twoWay", False),
            two_way_key=data.get("twoWayKey", data.get("twoWayId", "")),
            on_delete=OnDelete(data.get("onDelete", OnDelete.RESTRICT.value)),
            side=RelationSide(data.get("side", RelationSide.PARENT.value)),
            junction_collection=data.get("junctionCollection"),
        )


@dataclass(frozen=True)
class Attribute:
    """Definition of a single collection attribute.

    Attributes:
        key: Attribute key (also its id in metadata)
        type: Attribute type
        size: Maximum length for strings (characters)
        required: Whether the attribute must be present on write
        signed: Whether integers may be negative
        array: Whether the value is a list of the scalar type
        default: Default value when absent on create
        format: Optional format name (informational, e.g. "email")
        options: Relationship metadata (relationship attributes only)

    Invariants:
        - STRING attributes declare a positive size
        - RELATIONSHIP attributes carry options and are never arrays
        - A required attribute cannot declare a default
    """

    key: str
    type: AttributeType
    size: int = 0
    required: bool = False
    signed: bool = True
    array: bool = False
    default: Any = None
    format: str | None = None
    options: RelationshipOptions | None = None

    def __post_init__(self) -> None:
        """Validate attribute definition."""
        if not ID.is_valid(self.key):
            raise ValueError(f"Invalid attribute key '{self.key}'")
        if self.type == AttributeType.STRING and self.size <= 0:
            raise ValueError(f"size must be positive for string attribute '{self.key}'")
        if self.size < 0:
            raise ValueError(f"size must not be negative for attribute '{self.key}'")
        if self.type == AttributeType.RELATIONSHIP:
            if self.options is None:
                raise ValueError(f"options required for relationship attribute '{self.key}'")
            if self.array:
                raise ValueError(f"Relationship attribute '{self.key}' cannot be an array")
        elif self.options is not None:
            raise ValueError(f"Only relationship attributes take options ('{self.key}')")
        if self.default is not None:
            if self.required:
                raise ValueError(f"Cannot set a default value on required attribute '{self.key}'")
            is_valid, error = self.validate_value(self.default)
            if not is_valid:
                raise ValueError(f"Invalid default for '{self.key}': {error}")

    @property
    def is_relationship(self) -> bool:
        return self.type == AttributeType.RELATIONSHIP

    @property
    def relationship(self) -> RelationshipOptions:
        """Relationship options.

        Raises:
            ValueError: If this isn't a relationship attribute
        """
        if self.options is None:
            raise ValueError(f"Attribute '{self.key}' is not a relationship")
        return self.options

    @property
    def is_virtual(self) -> bool:
        """Whether the value lives outside the document (junction records)."""
        return self.options is not None and self.options.relation_type.uses_junction

    def validate_value(self, value: Any) -> tuple[bool, str | None]:
        """Validate a stored value against this attribute.

        Relationship values are validated by the relationship resolver.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if self.required:
                return False, f"Attribute '{self.key}' is required"
            return True, None

        if self.is_relationship:
            return True, None

        if self.array:
            if not isinstance(value, list):
                return False, f"Attribute '{self.key}' must be an array, got {type(value).__name__}"
            for i, item in enumerate(value):
                error = self._validate_scalar(item)
                if error:
                    return False, f"{error} (index {i})"
            return True, None

        error = self._validate_scalar(value)
        return error is None, error

    def _validate_scalar(self, value: Any) -> str | None:
        name = self.key
        if self.type == AttributeType.STRING:
            if not isinstance(value, str):
                return f"Attribute '{name}' must be a string, got {type(value).__name__}"
            if len(value) > self.size:
                return f"Attribute '{name}' must be at most {self.size} characters"

        elif self.type == AttributeType.INTEGER:
            if not isinstance(value, int) or isinstance(value, bool):
                return f"Attribute '{name}' must be an integer, got {type(value).__name__}"
            low = INTEGER_MIN if self.signed else 0
            high = INTEGER_MAX if self.signed else UNSIGNED_MAX
            if not low <= value <= high:
                return f"Attribute '{name}' must be between {low} and {high}"

        elif self.type == AttributeType.FLOAT:
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                return f"Attribute '{name}' must be a number, got {type(value).__name__}"
            if not self.signed and value < 0:
                return f"Attribute '{name}' must not be negative"

        elif self.type == AttributeType.BOOLEAN:
            if not isinstance(value, bool):
                return f"Attribute '{name}' must be a boolean, got {type(value).__name__}"

        elif self.type == AttributeType.DATETIME:
            try:
                parse_datetime(value)
            except (TypeError, ValueError):
                return f"Attribute '{name}' must be a valid datetime string"

        return None

    def width(self) -> int:
        """Estimated stored width in bytes, used against row-size limits."""
        if self.is_virtual:
            return 0
        if self.array:
            return OFF_ROW_WIDTH
        if self.is_relationship:
            if self.options is not None and self.options.relation_type.is_list:
                return OFF_ROW_WIDTH
            return ID_WIDTH
        if self.type == AttributeType.STRING:
            if self.size > STRING_INLINE_MAX:
                return OFF_ROW_WIDTH
            return self.size * 4 + (1 if self.size * 4 <= 255 else 2)
        return _SCALAR_WIDTHS[self.type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for metadata storage."""
        result: dict[str, Any] = {
            "$id": self.key,
            "key": self.key,
            "type": self.type.value,
            "size": self.size,
            "required": self.required,
            "signed": self.signed,
            "array": self.array,
            "default": self.default,
            "format": self.format,
            "options": self.options.to_dict() if self.options else {},
        }
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attribute:
        options = data.get("options") or None
        return cls(
            key=data["key"],
            type=AttributeType.from_str(data["type"]),
            size=data.get("size", 0),
            required=data.get("required", False),
            signed=data.get("signed", True),
            array=data.get("array", False),
            default=data.get("default"),
            format=data.get("format"),
            options=RelationshipOptions.from_dict(options) if options else None,
        )


_SCALAR_WIDTHS = {
    AttributeType.INTEGER: 8,
    AttributeType.FLOAT: 8,
    AttributeType.BOOLEAN: 1,
    AttributeType.DATETIME: 23,
}


@dataclass(frozen=True)
class Index:
    """Definition of an index over one or more attributes.

    Attributes:
        key: Index key, unique within the collection
        type: KEY, UNIQUE, or FULLTEXT
        attributes: Ordered attribute keys covered by the index
        lengths: Optional prefix lengths per attribute (0 = full)
        orders: Optional sort order per attribute
    """

    key: str
    type: IndexType
    attributes: tuple[str, ...]
    lengths: tuple[int, ...] = ()
    orders: tuple[OrderType, ...] = ()

    def __post_init__(self) -> None:
        if not ID.is_valid(self.key):
            raise ValueError(f"Invalid index key '{self.key}'")
        if not self.attributes:
            raise ValueError(f"Index '{self.key}' must cover at least one attribute")
        if self.lengths and len(self.lengths) > len(self.attributes):
            raise ValueError(f"Index '{self.key}' has more lengths than attributes")
        if self.orders and len(self.orders) > len(self.attributes):
            raise ValueError(f"Index '{self.key}' has more orders than attributes")

    def to_dict(self) -> dict[str, Any]:
        return {
            "$id": self.key,
            "key": self.key,
            "type": self.type.value,
            "attributes": list(self.attributes),
            "lengths": list(self.lengths),
            "orders": [o.value for o in self.orders],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Index:
        return cls(
            key=data["key"],
            type=IndexType(data["type"]),
            attributes=tuple(data.get("attributes", [])),
            lengths=tuple(data.get("lengths", [])),
            orders=tuple(OrderType(o) for o in data.get("orders", []) if o),
        )


@dataclass(frozen=True)
class Collection:
    """A named document schema.

    Attributes:
        id: Collection identifier
        name: Display name (defaults to id)
        attributes: Ordered attribute definitions
        indexes: Index definitions
        permissions: Collection-level permission strings
        document_security: Whether document permissions also grant access

    Example:
        >>> Person = Collection(
        ...     id="person",
        ...     attributes=(Attribute("name", AttributeType.STRING, size=64),),
        ... )
        >>> Person.get_attribute("name").size
        64
    """

    id: str
    name: str = ""
    attributes: tuple[Attribute, ...] = dataclass_field(default_factory=tuple)
    indexes: tuple[Index, ...] = dataclass_field(default_factory=tuple)
    permissions: tuple[str, ...] = dataclass_field(default_factory=tuple)
    document_security: bool = True

    def __post_init__(self) -> None:
        """Validate collection definition."""
        keys = [a.key for a in self.attributes]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate attribute key in collection '{self.id}'")
        index_keys = [i.key for i in self.indexes]
        if len(index_keys) != len(set(index_keys)):
            raise ValueError(f"Duplicate index key in collection '{self.id}'")

    def get_attribute(self, key: str) -> Attribute | None:
        for attribute in self.attributes:
            if attribute.key == key:
                return attribute
        return None

    def get_index(self, key: str) -> Index | None:
        for index in self.indexes:
            if index.key == key:
                return index
        return None

    def get_relationships(self) -> list[Attribute]:
        return [a for a in self.attributes if a.is_relationship]

    def get_required_attributes(self) -> list[Attribute]:
        return [a for a in self.attributes if a.required]

    def has_fulltext_index(self, attribute: str) -> bool:
        """Whether a fulltext index covers exactly ``attribute``."""
        return any(
            i.type == IndexType.FULLTEXT and i.attributes == (attribute,)
            for i in self.indexes
        )

    def with_attribute(self, attribute: Attribute) -> Collection:
        return replace(self, attributes=self.attributes + (attribute,))

    def without_attribute(self, key: str) -> Collection:
        return replace(self, attributes=tuple(a for a in self.attributes if a.key != key))

    def with_index(self, index: Index) -> Collection:
        return replace(self, indexes=self.indexes + (index,))

    def without_index(self, key: str) -> Collection:
        return replace(self, indexes=tuple(i for i in self.indexes if i.key != key))

    def row_width(self) -> int:
        return sum(a.width() for a in self.attributes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the metadata document layout."""
        return {
            "$id": self.id,
            "$permissions": list(self.permissions),
            "name": self.name or self.id,
            "attributes": [a.to_dict() for a in self.attributes],
            "indexes": [i.to_dict() for i in self.indexes],
            "documentSecurity": self.document_security,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Collection:
        return cls(
            id=data["$id"],
            name=data.get("name", data["$id"]),
            attributes=tuple(Attribute.from_dict(a) for a in data.get("attributes", [])),
            indexes=tuple(Index.from_dict(i) for i in data.get("indexes", [])),
            permissions=tuple(data.get("$permissions", [])),
            document_security=data.get("documentSecurity", True),
        )

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Collection):
            return NotImplemented
        return self.to_dict() == other.to_dict()
