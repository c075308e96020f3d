"""
Storage adapters for DocDB.

This module provides:
- The Adapter protocol and capability vocabulary (base.py)
- An in-memory document-store adapter (memory.py)
- A SQLite relational adapter (sqlite.py)
"""

from .base import CURSOR_AFTER, CURSOR_BEFORE, Adapter, Feature, create_adapter
from .memory import InMemoryAdapter
from .sqlite import SQLiteAdapter

__all__ = [
    "Adapter",
    "CURSOR_AFTER",
    "CURSOR_BEFORE",
    "Feature",
    "InMemoryAdapter",
    "SQLiteAdapter",
    "create_adapter",
]
