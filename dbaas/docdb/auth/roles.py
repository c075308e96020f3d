"""
Roles and permissions for DocDB.

Roles identify authorization principals:
    any                       Every request
    guests                    Unauthenticated requests
    users                     Any authenticated user
    user:ID                   Specific user
    user:ID/DIMENSION         Specific user in a dimension (e.g. verified)
    team:ID                   Any member of a team
    team:ID/ROLE              Team members holding a team role
    member:ID                 Specific team membership

Permissions pair an action with a role and are stored as strings in the
form ``action("role")``, e.g. ``read("any")`` or ``update("user:42")``.

Invariants:
    - Permission strings round-trip through parse() and str()
    - ``write`` is an alias expanding to create, update, and delete
    - Role strings are never persisted as active roles, only inside permissions

How to change safely:
    - New role kinds must be additive and parse without breaking old strings
    - New actions must be added to ACTIONS and to the write expansion if needed
"""

from __future__ import annotations

import re
from dataclasses import dataclass

ACTION_CREATE = "create"
ACTION_READ = "read"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTION_WRITE = "write"

ACTIONS = (ACTION_CREATE, ACTION_READ, ACTION_UPDATE, ACTION_DELETE, ACTION_WRITE)

# Actions a document-level permission may grant.
DOCUMENT_ACTIONS = (ACTION_READ, ACTION_UPDATE, ACTION_DELETE, ACTION_WRITE)

WRITE_EXPANSION = (ACTION_CREATE, ACTION_UPDATE, ACTION_DELETE)

ROLE_KINDS = ("any", "guests", "users", "user", "team", "member")

_PERMISSION_PATTERN = re.compile(r'^(?P<action>[a-z]+)\("(?P<role>[^"]+)"\)$')


@dataclass(frozen=True)
class Role:
    """Authorization principal.

    Attributes:
        kind: One of ROLE_KINDS
        identifier: Principal id for user/team/member roles
        dimension: Optional sub-scope (user dimension or team role)
    """

    kind: str
    identifier: str = ""
    dimension: str = ""

    @classmethod
    def parse(cls, role: str) -> Role:
        """Parse a role string.

        Raises:
            ValueError: If the role kind is unknown or an id is missing
        """
        kind, _, rest = role.partition(":")
        identifier, _, dimension = rest.partition("/")
        if kind not in ROLE_KINDS:
            raise ValueError(f"Invalid role kind: {role}")
        if kind in ("any", "guests", "users"):
            if rest:
                raise ValueError(f"Role '{kind}' does not take an identifier: {role}")
        elif not identifier:
            raise ValueError(f"Role '{kind}' requires an identifier: {role}")
        if kind == "member" and dimension:
            raise ValueError(f"Role 'member' does not take a dimension: {role}")
        return cls(kind=kind, identifier=identifier, dimension=dimension)

    def __str__(self) -> str:
        if not self.identifier:
            return self.kind
        if self.dimension:
            return f"{self.kind}:{self.identifier}/{self.dimension}"
        return f"{self.kind}:{self.identifier}"

    @staticmethod
    def any() -> Role:
        return Role("any")

    @staticmethod
    def guests() -> Role:
        return Role("guests")

    @staticmethod
    def users() -> Role:
        return Role("users")

    @staticmethod
    def user(identifier: str, dimension: str = "") -> Role:
        return Role("user", identifier, dimension)

    @staticmethod
    def team(identifier: str, dimension: str = "") -> Role:
        return Role("team", identifier, dimension)

    @staticmethod
    def member(identifier: str) -> Role:
        return Role("member", identifier)


@dataclass(frozen=True)
class Permission:
    """An (action, role) pair.

    Example:
        >>> str(Permission.read(Role.any()))
        'read("any")'
        >>> Permission.parse('update("user:42")').role
        'user:42'
    """

    action: str
    role: str

    @classmethod
    def parse(cls, permission: str) -> Permission:
        """Parse a permission string.

        Raises:
            ValueError: If the string, action, or role is malformed
        """
        match = _PERMISSION_PATTERN.match(permission or "")
        if not match:
            raise ValueError(f"Invalid permission format: {permission}")
        action = match.group("action")
        if action not in ACTIONS:
            raise ValueError(f"Invalid permission action: {action}")
        role = match.group("role")
        Role.parse(role)
        return cls(action=action, role=role)

    def actions(self) -> tuple[str, ...]:
        """Concrete actions granted (``write`` expands)."""
        if self.action == ACTION_WRITE:
            return WRITE_EXPANSION
        return (self.action,)

    def __str__(self) -> str:
        return f'{self.action}("{self.role}")'

    @staticmethod
    def create(role: Role | str) -> str:
        return str(Permission(ACTION_CREATE, str(role)))

    @staticmethod
    def read(role: Role | str) -> str:
        return str(Permission(ACTION_READ, str(role)))

    @staticmethod
    def update(role: Role | str) -> str:
        return str(Permission(ACTION_UPDATE, str(role)))

    @staticmethod
    def delete(role: Role | str) -> str:
        return str(Permission(ACTION_DELETE, str(role)))

    @staticmethod
    def write(role: Role | str) -> str:
        return str(Permission(ACTION_WRITE, str(role)))


def validate_permissions(
    permissions: list[str],
    allowed_actions: tuple[str, ...] = ACTIONS,
) -> list[str]:
    """Validate permission strings.

    Args:
        permissions: Permission strings to validate
        allowed_actions: Actions permitted in this context

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if not isinstance(permissions, (list, tuple)):
        return ["Permissions must be a list"]

    for i, raw in enumerate(permissions):
        if not isinstance(raw, str):
            errors.append(f"Entry {i}: must be a string")
            continue
        try:
            permission = Permission.parse(raw)
        except ValueError as e:
            errors.append(f"Entry {i}: {e}")
            continue
        if permission.action not in allowed_actions:
            errors.append(
                f"Entry {i}: action '{permission.action}' not allowed, "
                f"must be one of {list(allowed_actions)}"
            )

    return errors


def roles_for_action(permissions: list[str], action: str) -> set[str]:
    """Collect the roles that ``permissions`` grant for ``action``."""
    roles = set()
    for raw in permissions:
        permission = Permission.parse(raw)
        if action in permission.actions():
            roles.add(permission.role)
    return roles
