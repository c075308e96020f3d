"""
Document structure validation for DocDB.

This module checks a document against its collection schema before any
backend call:
- Unknown attributes (with suggestions for similar keys)
- Required attributes, types, sizes, and array shapes
- Reserved keys ($id, $permissions, timestamps)
- Stored relationship values (id, id list, or absent for junction sides)

Invariants:
    - Validation errors are deterministic
    - Error messages include the attribute key and the offending value
    - Validation never mutates the document except in apply_defaults()
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any, List, Tuple

from ..auth.roles import DOCUMENT_ACTIONS, validate_permissions
from ..document import Document
from ..errors import Structure
from ..helpers import ID, parse_datetime
from .types import Attribute, Collection


def validate_document(
    collection: Collection,
    document: Document,
) -> Tuple[bool, List[str]]:
    """Validate a document against a collection.

    Relationship attributes must already be normalized to stored form
    (see RelationshipResolver.prepare_write).

    Args:
        collection: Collection to validate against
        document: Document to validate

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    if not ID.is_valid(document.get_id()):
        errors.append(f"Invalid document id '{document.get_id()}'")

    for key in ("$createdAt", "$updatedAt"):
        value = document.get(key)
        if value is not None:
            try:
                parse_datetime(value)
            except (TypeError, ValueError):
                errors.append(f"Reserved attribute '{key}' must be a datetime, got {value!r}")

    errors.extend(
        f"Invalid permissions: {e}"
        for e in validate_permissions(document.get("$permissions", []), DOCUMENT_ACTIONS)
    )

    # Check for unknown attributes
    known = {a.key for a in collection.attributes}
    for key in document.get_attributes():
        if key in known:
            continue
        suggestions = get_close_matches(key, list(known), n=3)
        if suggestions:
            errors.append(f"Unknown attribute '{key}'. Did you mean: {suggestions}?")
        else:
            errors.append(f"Unknown attribute '{key}'")

    # Validate each attribute
    for attribute in collection.attributes:
        value = document.get(attribute.key)
        if attribute.is_relationship:
            error = _validate_relationship_value(attribute, value)
        else:
            _, error = attribute.validate_value(value)
        if error:
            errors.append(error)

    return len(errors) == 0, errors


def _validate_relationship_value(attribute: Attribute, value: Any) -> str | None:
    relation = attribute.relationship.relation_type
    if attribute.is_virtual or value is None:
        return None
    if relation.is_list:
        if not isinstance(value, list) or not all(ID.is_valid(v) for v in value):
            return f"Relationship '{attribute.key}' must be a list of document ids"
        return None
    if not ID.is_valid(value):
        return f"Relationship '{attribute.key}' must be a document id, got {value!r}"
    return None


def validate_or_raise(collection: Collection, document: Document) -> None:
    """Validate document and raise if invalid.

    Raises:
        Structure: If validation fails
    """
    is_valid, errors = validate_document(collection, document)
    if not is_valid:
        first_key = _first_key(collection, document)
        raise Structure(
            f"Invalid document structure for '{collection.id}': {'; '.join(errors)}",
            collection=collection.id,
            key=first_key,
            value=document.get(first_key) if first_key else None,
            errors=errors,
        )


def _first_key(collection: Collection, document: Document) -> str | None:
    known = {a.key for a in collection.attributes}
    for key in document.get_attributes():
        if key not in known:
            return key
    for attribute in collection.attributes:
        if attribute.is_relationship:
            if _validate_relationship_value(attribute, document.get(attribute.key)):
                return attribute.key
            continue
        is_valid, _ = attribute.validate_value(document.get(attribute.key))
        if not is_valid:
            return attribute.key
    return None


def apply_defaults(collection: Collection, document: Document) -> Document:
    """Fill absent attributes with their declared defaults."""
    for attribute in collection.attributes:
        if attribute.is_virtual:
            continue
        if document.get(attribute.key) is None:
            if attribute.default is not None:
                document[attribute.key] = attribute.default
    return document

