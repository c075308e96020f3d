"""
Authorization filter and request-scoped role context for DocDB.

This module gates every document read and write:
- Authorization holds the active role set of one logical request
- can_access() evaluates a collection/document permission list for an action
- skip() enters elevated mode for system-internal cascades

There is no process-wide role state. Each Database carries its own
Authorization instance; hosts create one per request (Database.for_roles)
so concurrent requests never observe each other's roles.

Invariants:
    - The ``any`` role is always active
    - Elevated mode is re-entrant and always restored on exit
    - Collection permissions always apply; document permissions apply only
      when the collection has document security enabled
    - check() raises before any backend call is made

How to change safely:
    - New role kinds must be additive (see roles.py)
    - Keep skip() nesting-safe; cascades nest elevated sections
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from ..errors import AuthorizationError
from .roles import Role, roles_for_action

if TYPE_CHECKING:
    from ..document import Document
    from ..schema.types import Collection

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "any"


class Authorization:
    """Active role set plus elevated-mode switch for one request.

    Thread safety:
        Not shared between requests. Create one per request/session.

    Example:
        >>> auth = Authorization(["user:42"])
        >>> auth.get_roles()
        ['any', 'user:42']
        >>> with auth.skip():
        ...     auth.is_elevated
        True
    """

    def __init__(self, roles: Iterable[str] = ()) -> None:
        self._roles: set[str] = {DEFAULT_ROLE}
        self._elevated = 0
        self._enabled = True
        for role in roles:
            self.set_role(role)

    @property
    def is_elevated(self) -> bool:
        """Whether checks are currently bypassed."""
        return self._elevated > 0 or not self._enabled

    def set_role(self, role: Role | str) -> None:
        """Add a role to the active set.

        Raises:
            ValueError: If the role string is malformed
        """
        role_str = str(role)
        Role.parse(role_str)
        self._roles.add(role_str)

    def unset_role(self, role: Role | str) -> None:
        role_str = str(role)
        if role_str != DEFAULT_ROLE:
            self._roles.discard(role_str)

    def get_roles(self) -> list[str]:
        return sorted(self._roles)

    def clean_roles(self) -> None:
        """Reset to the default role set (between unrelated requests)."""
        self._roles = {DEFAULT_ROLE}

    def disable(self) -> None:
        """Turn checks off until enable() (host-level maintenance tasks)."""
        self._enabled = False

    def enable(self) -> None:
        self._enabled = True

    @contextmanager
    def skip(self) -> Iterator[Authorization]:
        """Run the enclosed block in elevated mode.

        Used for system-internal writes such as maintaining the reverse
        side of a two-way relationship or junction records.
        """
        self._elevated += 1
        try:
            yield self
        finally:
            self._elevated -= 1

    def is_valid(self, allowed_roles: Iterable[str]) -> bool:
        """Whether any active role is in ``allowed_roles``."""
        if self.is_elevated:
            return True
        return not self._roles.isdisjoint(allowed_roles)

    def can_access(
        self,
        collection: Collection,
        action: str,
        document: Document | None = None,
    ) -> bool:
        """Evaluate collection and (optionally) document permissions.

        Args:
            collection: Collection whose defaults apply
            action: create, read, update, or delete
            document: Document whose own permissions apply when the
                collection has document security enabled

        Returns:
            True if access is granted
        """
        if self.is_elevated:
            return True

        if self.is_valid(roles_for_action(list(collection.permissions), action)):
            return True

        if document is not None and collection.document_security:
            return self.is_valid(roles_for_action(document.get_permissions(), action))

        return False

    def check(
        self,
        collection: Collection,
        action: str,
        document: Document | None = None,
    ) -> None:
        """Check access and raise if denied.

        Raises:
            AuthorizationError: If no active role grants ``action``
        """
        if self.can_access(collection, action, document):
            return

        document_id = document.get_id() if document is not None else None
        logger.debug(
            "Authorization denied",
            extra={
                "collection": collection.id,
                "document_id": document_id,
                "action": action,
                "roles": self.get_roles(),
            },
        )
        target = f"document '{document_id}' in " if document_id else ""
        raise AuthorizationError(
            f"Missing '{action}' permission on {target}collection '{collection.id}'",
            action=action,
            collection=collection.id,
            document_id=document_id,
            roles=self.get_roles(),
        )

    def query_roles(self, collection: Collection, action: str = "read") -> list[str] | None:
        """Roles an adapter must filter documents by for a query.

        Returns None when no per-document filtering is needed: elevated mode,
        or the collection itself grants the action to an active role.

        Raises:
            AuthorizationError: If neither the collection grants the action nor
                document security could grant it per document
        """
        if self.is_elevated:
            return None
        if self.is_valid(roles_for_action(list(collection.permissions), action)):
            return None
        if not collection.document_security:
            self.check(collection, action)
        return self.get_roles()

    def fork(self, roles: Iterable[str] | None = None) -> Authorization:
        """New independent context, optionally with different roles."""
        clone = Authorization(self.get_roles() if roles is None else roles)
        clone._enabled = self._enabled
        return clone

    def __repr__(self) -> str:
        state: dict[str, Any] = {"roles": self.get_roles(), "elevated": self.is_elevated}
        return f"Authorization({state})"
