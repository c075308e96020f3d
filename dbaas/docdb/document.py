"""
Document model for DocDB.

A Document is a plain mapping from attribute key to value plus a set of
reserved keys, all prefixed with ``$``:

    $id           Identifier, unique within the collection
    $internalId   Backend sequence id (assigned by the adapter)
    $collection   Owning collection id
    $createdAt    Creation timestamp (UTC string)
    $updatedAt    Last update timestamp (UTC string)
    $permissions  List of permission strings, e.g. 'read("any")'

Nested mappings that carry a ``$id`` are promoted to Documents so expanded
relationship values expose the same helpers as the root document.

Invariants:
    - A Document is a dict; any dict-consuming code can read it
    - Reserved keys never collide with schema attribute keys
    - get_array_copy() returns plain dicts/lists only (safe to serialize)
"""

from __future__ import annotations

import copy
from typing import Any, Iterable

RESERVED_KEYS = (
    "$id",
    "$internalId",
    "$collection",
    "$createdAt",
    "$updatedAt",
    "$permissions",
)


class Document(dict):
    """Schema-conforming record with identity and permissions.

    Example:
        >>> doc = Document({"$id": "city1", "name": "Paris"})
        >>> doc.get_id()
        'city1'
        >>> doc["name"]
        'Paris'
    """

    def __init__(self, data: dict[str, Any] | None = None, **kwargs: Any) -> None:
        super().__init__()
        for key, value in {**(data or {}), **kwargs}.items():
            self[key] = _promote(value)

    def get_id(self) -> str:
        return self.get("$id", "")

    def get_collection(self) -> str:
        return self.get("$collection", "")

    def get_created_at(self) -> str | None:
        return self.get("$createdAt")

    def get_updated_at(self) -> str | None:
        return self.get("$updatedAt")

    def get_permissions(self) -> list[str]:
        return list(self.get("$permissions") or [])

    def get_attributes(self) -> dict[str, Any]:
        """Return only the non-reserved attributes."""
        return {k: v for k, v in self.items() if k not in RESERVED_KEYS}

    def is_empty(self) -> bool:
        return not self.get_id()

    def get_array_copy(self) -> dict[str, Any]:
        return _plain(self)

    def copy(self) -> Document:
        return Document(copy.deepcopy(self.get_array_copy()))


def _promote(value: Any) -> Any:
    if isinstance(value, Document):
        return value
    if isinstance(value, dict) and "$id" in value:
        return Document(value)
    if isinstance(value, list):
        return [_promote(v) for v in value]
    return value


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def ids_of(values: Iterable[Any]) -> list[str]:
    """Extract identifiers from a mix of id strings and documents."""
    result: list[str] = []
    for value in values:
        if isinstance(value, dict):
            value = value.get("$id")
        if isinstance(value, str) and value:
            result.append(value)
    return result
