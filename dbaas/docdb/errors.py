"""
Error types for DocDB.

This module defines every exception kind the database layer raises:
- DatabaseError: Base exception
- AuthorizationError: Active roles lack the required permission
- Duplicate: Identifier or schema key collision
- Limit: Attribute, index, or document-size limit exceeded
- Structure: Document does not conform to its collection schema
- QueryError: Query does not conform to the collection schema
- NotFound: Collection, document, or attribute absent
- Restricted: Delete blocked by a relationship's restrict policy

Backend errors that are not one of the kinds above (driver timeouts,
connection failures) are never wrapped; they reach the caller unchanged.

Invariants:
    - All errors inherit from DatabaseError
    - Errors include the collection, key, and offending value when known
    - Error codes are stable and safe to map to HTTP statuses by the host
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DatabaseError(Exception):
    """Base exception for all DocDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATABASE_ERROR"
        self.details = details or {}


class AuthorizationError(DatabaseError):
    """Access denied.

    Raised when:
    - No active role holds the permission for the requested action
    - A collection-level create permission is missing
    """

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        collection: Optional[str] = None,
        document_id: Optional[str] = None,
        roles: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="AUTHORIZATION",
            details={
                "action": action,
                "collection": collection,
                "document_id": document_id,
                "roles": roles or [],
            },
        )
        self.action = action
        self.collection = collection
        self.document_id = document_id
        self.roles = roles or []


class Duplicate(DatabaseError):
    """Identifier or schema key collision.

    Raised when:
    - A document id already exists in the collection
    - A collection, attribute, index, or relationship key already exists
    - A unique index rejects a value
    - A one-to-one target is already linked to another document
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DUPLICATE",
            details={"collection": collection, "key": key},
        )
        self.collection = collection
        self.key = key


class Limit(DatabaseError):
    """Backend-declared limit exceeded.

    Attributes:
        collection: Collection being changed
        limit: The limit that was hit
        actual: The value that would have resulted
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        limit: Optional[int] = None,
        actual: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="LIMIT",
            details={"collection": collection, "limit": limit, "actual": actual},
        )
        self.collection = collection
        self.limit = limit
        self.actual = actual


class Structure(DatabaseError):
    """Document does not conform to the collection schema.

    Raised when:
    - A required attribute is missing
    - An attribute value has the wrong type or size
    - The document carries an unknown attribute
    - A permission or identifier is malformed
    """

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        key: Optional[str] = None,
        value: Any = None,
        errors: Optional[List[str]] = None,
        code: str = "STRUCTURE",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={
                "collection": collection,
                "key": key,
                "value": value,
                "errors": errors or [],
            },
        )
        self.collection = collection
        self.key = key
        self.value = value
        self.errors = errors or []


class QueryError(Structure):
    """Query filters, ordering, or pagination do not match the schema."""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        key: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            collection=collection,
            key=key,
            value=value,
            code="QUERY_INVALID",
        )


class NotFound(DatabaseError):
    """Resource not found.

    Raised when:
    - Collection doesn't exist
    - Document doesn't exist for update or delete
    - Attribute, index, or relationship key doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "collection": collection,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.collection = collection


class Restricted(DatabaseError):
    """Delete blocked because related documents exist under a restrict policy."""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        key: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="RESTRICTED",
            details={
                "collection": collection,
                "key": key,
                "document_id": document_id,
            },
        )
        self.collection = collection
        self.key = key
        self.document_id = document_id
