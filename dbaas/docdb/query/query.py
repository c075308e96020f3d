"""
Backend-neutral query filters.

A Query is one filter: an attribute, a method, and operand values. Lists of
queries are ANDed. Ordering, limit, offset and cursor travel next to the
filter list as plain arguments to find().

String syntax (used by hosts that accept queries over the wire):

    name.equal("Paris")
    population.greaterThan(1262322000)
    created.between("2020-01-01", "2021-01-01")
    bio.search("ocean")
    deletedAt.isNull()

Arguments are JSON values separated by commas; several arguments to
equal/notEqual/contains mean "any of".

Invariants:
    - Query instances are immutable
    - Method names are canonical after construction (aliases are mapped)
    - Parsing never evaluates code; arguments are decoded with json
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from ..errors import QueryError

TYPE_EQUAL = "equal"
TYPE_NOT_EQUAL = "notEqual"
TYPE_LESSER = "lessThan"
TYPE_LESSER_EQUAL = "lessThanEqual"
TYPE_GREATER = "greaterThan"
TYPE_GREATER_EQUAL = "greaterThanEqual"
TYPE_BETWEEN = "between"
TYPE_SEARCH = "search"
TYPE_IS_NULL = "isNull"
TYPE_IS_NOT_NULL = "isNotNull"
TYPE_CONTAINS = "contains"

METHODS = (
    TYPE_EQUAL,
    TYPE_NOT_EQUAL,
    TYPE_LESSER,
    TYPE_LESSER_EQUAL,
    TYPE_GREATER,
    TYPE_GREATER_EQUAL,
    TYPE_BETWEEN,
    TYPE_SEARCH,
    TYPE_IS_NULL,
    TYPE_IS_NOT_NULL,
    TYPE_CONTAINS,
)

ALIASES = {
    "eq": TYPE_EQUAL,
    "notequal": TYPE_NOT_EQUAL,
    "not-equal": TYPE_NOT_EQUAL,
    "neq": TYPE_NOT_EQUAL,
    "less": TYPE_LESSER,
    "lt": TYPE_LESSER,
    "less-equal": TYPE_LESSER_EQUAL,
    "lte": TYPE_LESSER_EQUAL,
    "greater": TYPE_GREATER,
    "gt": TYPE_GREATER,
    "greater-equal": TYPE_GREATER_EQUAL,
    "gte": TYPE_GREATER_EQUAL,
    "is-null": TYPE_IS_NULL,
    "is-not-null": TYPE_IS_NOT_NULL,
}

# Methods that take no operand.
NULL_METHODS = (TYPE_IS_NULL, TYPE_IS_NOT_NULL)
# Methods that compare a single ordered operand.
RANGE_METHODS = (TYPE_LESSER, TYPE_LESSER_EQUAL, TYPE_GREATER, TYPE_GREATER_EQUAL)

_QUERY_PATTERN = re.compile(r"^(?P<attribute>[$A-Za-z0-9_.\-]+?)\.(?P<method>[A-Za-z\-]+)\((?P<args>.*)\)$", re.S)


def canonical_method(method: str) -> str:
    """Map an alias to its canonical method name.

    Raises:
        QueryError: If the method is unknown
    """
    if method in METHODS:
        return method
    canonical = ALIASES.get(method.lower())
    if canonical is None:
        for known in METHODS:
            if known.lower() == method.lower():
                return known
        raise QueryError(f"Unknown query method '{method}'", value=method)
    return canonical


@dataclass(frozen=True)
class Query:
    """A single filter.

    Attributes:
        method: Canonical method name (see METHODS)
        attribute: Attribute key (may be a reserved key such as $id)
        values: Operand values

    Example:
        >>> Query.greater_than("population", 1262322000)
        Query(method='greaterThan', attribute='population', values=(1262322000,))
    """

    method: str
    attribute: str
    values: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", canonical_method(self.method))
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(self.values))

    @property
    def value(self) -> Any:
        """First operand, or None for operand-less methods."""
        return self.values[0] if self.values else None

    def with_values(self, values: tuple[Any, ...] | list[Any]) -> Query:
        return Query(self.method, self.attribute, tuple(values))

    @classmethod
    def equal(cls, attribute: str, *values: Any) -> Query:
        return cls(TYPE_EQUAL, attribute, values)

    @classmethod
    def not_equal(cls, attribute: str, *values: Any) -> Query:
        return cls(TYPE_NOT_EQUAL, attribute, values)

    @classmethod
    def less_than(cls, attribute: str, value: Any) -> Query:
        return cls(TYPE_LESSER, attribute, (value,))

    @classmethod
    def less_than_equal(cls, attribute: str, value: Any) -> Query:
        return cls(TYPE_LESSER_EQUAL, attribute, (value,))

    @classmethod
    def greater_than(cls, attribute: str, value: Any) -> Query:
        return cls(TYPE_GREATER, attribute, (value,))

    @classmethod
    def greater_than_equal(cls, attribute: str, value: Any) -> Query:
        return cls(TYPE_GREATER_EQUAL, attribute, (value,))

    @classmethod
    def between(cls, attribute: str, start: Any, end: Any) -> Query:
        return cls(TYPE_BETWEEN, attribute, (start, end))

    @classmethod
    def search(cls, attribute: str, value: str) -> Query:
        return cls(TYPE_SEARCH, attribute, (value,))

    @classmethod
    def is_null(cls, attribute: str) -> Query:
        return cls(TYPE_IS_NULL, attribute)

    @classmethod
    def is_not_null(cls, attribute: str) -> Query:
        return cls(TYPE_IS_NOT_NULL, attribute)

    @classmethod
    def contains(cls, attribute: str, *values: Any) -> Query:
        return cls(TYPE_CONTAINS, attribute, values)

    @classmethod
    def parse(cls, text: str) -> Query:
        """Parse the ``attribute.method(args)`` string form.

        Raises:
            QueryError: If the string is malformed or an argument is not JSON
        """
        match = _QUERY_PATTERN.match(text.strip())
        if not match:
            raise QueryError(f"Invalid query syntax: {text!r}", value=text)

        raw_args = match.group("args").strip()
        values: list[Any] = []
        if raw_args:
            try:
                decoded = json.loads(f"[{raw_args}]")
            except json.JSONDecodeError as e:
                raise QueryError(
                    f"Invalid query arguments in {text!r}: {e.msg}",
                    key=match.group("attribute"),
                    value=raw_args,
                ) from e
            values = decoded

        return cls(match.group("method"), match.group("attribute"), tuple(values))

    def to_string(self) -> str:
        args = ", ".join(json.dumps(v) for v in self.values)
        return f"{self.attribute}.{self.method}({args})"
