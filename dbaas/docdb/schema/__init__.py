"""
Schema module for DocDB.

This module provides:
- Collection, attribute, index, and relationship type definitions (types.py)
- Document structure validation (structure.py)
- The persistent, cached Schema Store (store.py)

Invariants:
    - Collections are immutable values; the store persists replacements
    - Schema changes are appended; removal is always an explicit drop
"""

from .types import (
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
from .structure import apply_defaults, validate_document, validate_or_raise
from .store import METADATA, SchemaStore

__all__ = [
    "Attribute",
    "AttributeType",
    "Collection",
    "Index",
    "IndexType",
    "METADATA",
    "OnDelete",
    "OrderType",
    "RelationSide",
    "RelationType",
    "RelationshipOptions",
    "SchemaStore",
    "apply_defaults",
    "validate_document",
    "validate_or_raise",
]
