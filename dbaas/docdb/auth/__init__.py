"""
Authorization module for DocDB.

This module provides:
- Role and Permission value types (roles.py)
- The request-scoped Authorization context and filter (authorization.py)

Invariants:
    - Every public read/write entry point checks access before the adapter
    - Active roles live on an Authorization instance, never in module state
"""

from .authorization import Authorization
from .roles import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_READ,
    ACTION_UPDATE,
    ACTION_WRITE,
    Permission,
    Role,
    validate_permissions,
)

__all__ = [
    "Authorization",
    "Permission",
    "Role",
    "validate_permissions",
    "ACTION_CREATE",
    "ACTION_READ",
    "ACTION_UPDATE",
    "ACTION_DELETE",
    "ACTION_WRITE",
]
