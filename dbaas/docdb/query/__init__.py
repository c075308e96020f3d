"""
Query module for DocDB.

This module provides:
- Query filters and their string syntax (query.py)
- Validation of filters, ordering and pagination against a schema (validator.py)
- The query engine that scopes, delegates and expands results (engine.py)
"""

from .query import METHODS, Query
from .validator import QueryValidator

__all__ = [
    "METHODS",
    "Query",
    "QueryValidator",
]
