"""
Query Engine for DocDB.

Turns a find()/count() call into one validated adapter call:
- Filters, ordering, pagination, and cursor are validated against the
  collection schema before the adapter is touched
- The Authorization Filter decides whether results must be scoped to the
  active roles; the adapter applies that scope inside the backend query
- Results are expanded through the Relationship Resolver lazily, one
  document at a time, as the caller iterates

Invariants:
    - No adapter call happens for an invalid query
    - Ordering is total: $id is always the final tiebreak
    - A cursor page never repeats a document from the cursor's side
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any, Optional

from ..adapters.base import CURSOR_AFTER, CURSOR_BEFORE
from ..document import Document
from ..errors import QueryError
from ..schema.types import Collection, OrderType
from .query import Query
from .validator import QueryValidator

if TYPE_CHECKING:
    from ..database import Database

logger = logging.getLogger(__name__)


class QueryEngine:
    """Validated, permission-scoped queries for one Database."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def _validator(self, collection: Collection) -> QueryValidator:
        return QueryValidator(collection, max_limit=self.database.config.query.max_limit)

    def find(
        self,
        collection: Collection,
        queries: Sequence[Query | str] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType | str] = (),
        cursor: Document | str | None = None,
        cursor_direction: str = CURSOR_AFTER,
    ) -> Iterator[Document]:
        """Run a query and return a lazy iterator of expanded documents.

        Validation and the adapter call happen immediately; relationship
        expansion happens as the iterator is consumed.

        Raises:
            QueryError: If any filter, ordering, pagination, or cursor is invalid
            AuthorizationError: If the collection denies read and has no
                document security
        """
        validator = self._validator(collection)
        validated = validator.validate_queries(self._parse(queries))
        if limit is None:
            limit = self.database.config.query.default_limit
        validator.validate_pagination(limit, offset)
        attributes, directions = validator.validate_order(order_attributes, order_types)

        if cursor_direction not in (CURSOR_AFTER, CURSOR_BEFORE):
            raise QueryError(
                f"Invalid cursor direction {cursor_direction!r}",
                collection=collection.id,
                value=cursor_direction,
            )
        cursor_document = self._cursor(collection, cursor)
        validator.validate_cursor(cursor_document)

        roles = self.database.authorization.query_roles(collection)
        documents = self.database.adapter.find(
            collection.id,
            validated,
            limit=limit,
            offset=offset,
            order_attributes=attributes,
            order_types=directions,
            cursor=cursor_document,
            cursor_direction=cursor_direction,
            roles=roles,
        )
        logger.debug(
            "Query executed",
            extra={
                "collection": collection.id,
                "queries": [q.to_string() for q in validated],
                "results": len(documents),
                "scoped": roles is not None,
            },
        )
        return self._expand(collection, documents)

    def count(
        self,
        collection: Collection,
        queries: Sequence[Query | str] = (),
        max: Optional[int] = None,
    ) -> int:
        """Count matching documents visible to the active roles."""
        validated = self._validator(collection).validate_queries(self._parse(queries))
        if max is not None and (isinstance(max, bool) or not isinstance(max, int) or max < 0):
            raise QueryError(f"Invalid max {max!r}", collection=collection.id, value=max)
        roles = self.database.authorization.query_roles(collection)
        return self.database.adapter.count(collection.id, validated, max=max, roles=roles)

    def _expand(self, collection: Collection, documents: list[Document]) -> Iterator[Document]:
        resolver = self.database.relationships
        for document in documents:
            yield resolver.expand(collection, document)

    def _cursor(self, collection: Collection, cursor: Any) -> Optional[Document]:
        if cursor is None or isinstance(cursor, dict):
            return cursor
        if isinstance(cursor, str):
            stored = self.database._load(collection, cursor)
            if stored is None:
                raise QueryError(
                    f"Cursor document '{cursor}' not found in '{collection.id}'",
                    collection=collection.id,
                    value=cursor,
                )
            return stored
        raise QueryError(
            f"Cursor must be a document or document id, got {type(cursor).__name__}",
            collection=collection.id,
        )

    @staticmethod
    def _parse(queries: Sequence[Query | str]) -> list[Query]:
        return [q if isinstance(q, Query) else Query.parse(q) for q in queries]
