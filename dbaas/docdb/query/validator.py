"""
Query validation against a collection schema.

Every check here runs before the adapter is called, so a malformed query
never reaches a backend:
- Filter attributes exist (schema attributes or $id/$createdAt/$updatedAt)
- ``search`` is backed by a fulltext index over exactly that attribute
- ``contains`` targets an array or a list relationship
- Operand count and operand types match the method and attribute type
- Order attributes exist and are orderable
- Limit, offset and cursor are in range

Invariants:
    - Validation is pure; it returns normalized copies and never mutates input
    - Datetime operands are normalized to the stored format
    - All failures raise QueryError (a Structure)
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from ..document import Document
from ..errors import QueryError
from ..helpers import normalize_datetime
from ..schema.types import (
    INTERNAL_ATTRIBUTES,
    Attribute,
    AttributeType,
    Collection,
    OrderType,
)
from .query import (
    NULL_METHODS,
    RANGE_METHODS,
    TYPE_BETWEEN,
    TYPE_CONTAINS,
    TYPE_SEARCH,
    Query,
)


class QueryValidator:
    """Validates queries, ordering and pagination for one collection.

    Example:
        >>> validator = QueryValidator(city_collection, max_limit=5000)
        >>> validator.validate_queries([Query.greater_than("population", 10)])
        [Query(method='greaterThan', attribute='population', values=(10,))]
    """

    def __init__(self, collection: Collection, max_limit: int = 5000) -> None:
        self.collection = collection
        self.max_limit = max_limit

    def _fail(self, message: str, key: str | None = None, value: Any = None) -> QueryError:
        return QueryError(message, collection=self.collection.id, key=key, value=value)

    def _resolve(self, key: str) -> tuple[AttributeType, Attribute | None]:
        if key in INTERNAL_ATTRIBUTES:
            return INTERNAL_ATTRIBUTES[key], None
        attribute = self.collection.get_attribute(key)
        if attribute is None:
            raise self._fail(
                f"Attribute not found in schema: '{key}'",
                key=key,
            )
        return attribute.type, attribute

    def validate_queries(self, queries: Sequence[Query]) -> list[Query]:
        """Validate filters and return normalized copies.

        Raises:
            QueryError: On the first invalid filter
        """
        return [self.validate_query(q) for q in queries]

    def validate_query(self, query: Query) -> Query:
        if not isinstance(query, Query):
            raise self._fail(f"Invalid query object: {query!r}", value=query)

        attribute_type, attribute = self._resolve(query.attribute)
        method = query.method
        values = query.values

        if attribute is not None and attribute.is_virtual:
            raise self._fail(
                f"Cannot query many-to-many relationship '{query.attribute}'",
                key=query.attribute,
            )

        is_list = attribute is not None and (
            attribute.array
            or (attribute.options is not None and attribute.options.relation_type.is_list)
        )

        if method in NULL_METHODS:
            if values:
                raise self._fail(f"{method} takes no values", key=query.attribute, value=list(values))
            return query

        if not values:
            raise self._fail(f"{method} requires at least one value", key=query.attribute)

        if method in RANGE_METHODS or method == TYPE_SEARCH:
            if len(values) != 1:
                raise self._fail(
                    f"{method} takes exactly one value, got {len(values)}",
                    key=query.attribute,
                    value=list(values),
                )

        if method == TYPE_BETWEEN and len(values) != 2:
            raise self._fail(
                f"between takes exactly two values, got {len(values)}",
                key=query.attribute,
                value=list(values),
            )

        if method == TYPE_SEARCH:
            if attribute_type != AttributeType.STRING:
                raise self._fail(
                    f"search requires a string attribute, '{query.attribute}' is {attribute_type.value}",
                    key=query.attribute,
                )
            if not self.collection.has_fulltext_index(query.attribute):
                raise self._fail(
                    f"Searching by attribute '{query.attribute}' requires a fulltext index",
                    key=query.attribute,
                    value=query.value,
                )

        if method == TYPE_CONTAINS:
            if not is_list:
                raise self._fail(
                    f"contains requires an array attribute, '{query.attribute}' is not one",
                    key=query.attribute,
                )
        elif is_list and method != TYPE_SEARCH:
            raise self._fail(
                f"Array attribute '{query.attribute}' supports only contains, isNull and isNotNull",
                key=query.attribute,
            )

        if (method in RANGE_METHODS or method == TYPE_BETWEEN) and attribute_type in (
            AttributeType.BOOLEAN,
            AttributeType.RELATIONSHIP,
        ):
            raise self._fail(
                f"{method} is not supported on {attribute_type.value} attribute '{query.attribute}'",
                key=query.attribute,
            )

        normalized = tuple(self._normalize_value(query.attribute, attribute_type, v) for v in values)
        return query.with_values(normalized)

    def _normalize_value(self, key: str, attribute_type: AttributeType, value: Any) -> Any:
        if attribute_type == AttributeType.INTEGER:
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        elif attribute_type == AttributeType.FLOAT:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
        elif attribute_type == AttributeType.BOOLEAN:
            if isinstance(value, bool):
                return value
        elif attribute_type == AttributeType.DATETIME:
            if isinstance(value, str):
                try:
                    return normalize_datetime(value)
                except ValueError:
                    pass
        elif isinstance(value, str):
            return value

        raise self._fail(
            f"Query value {value!r} does not match type '{attribute_type.value}' of '{key}'",
            key=key,
            value=value,
        )

    def validate_order(
        self,
        order_attributes: Sequence[str],
        order_types: Sequence[OrderType | str] = (),
    ) -> tuple[list[str], list[OrderType]]:
        """Validate ordering and return (attributes, directions) of equal length."""
        if len(order_types) > len(order_attributes):
            raise self._fail("More order types than order attributes", value=list(order_types))

        directions: list[OrderType] = []
        for i, key in enumerate(order_attributes):
            attribute_type, attribute = self._resolve(key)
            if attribute_type == AttributeType.RELATIONSHIP or (attribute is not None and attribute.array):
                raise self._fail(f"Cannot order by attribute '{key}'", key=key)
            raw = order_types[i] if i < len(order_types) else OrderType.ASC
            if isinstance(raw, OrderType):
                directions.append(raw)
                continue
            try:
                directions.append(OrderType(str(raw).upper()))
            except ValueError:
                raise self._fail(f"Invalid order type {raw!r}", key=key, value=raw) from None

        return list(order_attributes), directions

    def validate_pagination(self, limit: int | None, offset: int) -> None:
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
                raise self._fail(f"Invalid limit {limit!r}", value=limit)
            if limit > self.max_limit:
                raise self._fail(f"Limit {limit} exceeds maximum {self.max_limit}", value=limit)
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise self._fail(f"Invalid offset {offset!r}", value=offset)

    def validate_cursor(self, cursor: Document | None) -> None:
        if cursor is None:
            return
        if not isinstance(cursor, dict) or not cursor.get("$id"):
            raise self._fail("Cursor must be a stored document", value=cursor)
        owner = cursor.get("$collection")
        if owner and owner != self.collection.id:
            raise self._fail(
                f"Cursor belongs to collection '{owner}', not '{self.collection.id}'",
                value=cursor.get("$id"),
            )
