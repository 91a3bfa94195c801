"""
Store driver interface consumed by the data-access layer.

A driver is one live session bound to one keyspace. The registry owns
drivers; everything else reaches them through the operation executor.
"""

import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, Literal, NamedTuple, Optional, Sequence

from vertector_columnstore.errors import StoreValidationError

# Default number of columns (or rows, for indexed slices) per request
DEFAULT_COUNT = 100

_IDENTIFIER = re.compile(r'^[a-zA-Z][a-zA-Z0-9_]*$')


def validate_identifier(name: str, field_name: str = "column_family") -> str:
    """
    Check a keyspace or column family name before it is interpolated into CQL.

    Raises:
        StoreValidationError: If the name is not a plain CQL identifier
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name) or len(name) > 48:
        raise StoreValidationError(
            "must start with a letter, contain only alphanumerics and underscores, "
            "and be at most 48 characters",
            field=field_name,
            value=name
        )
    return name


class Column(NamedTuple):
    """A column as returned inside an indexed slice."""
    name: Any
    value: Any
    timestamp: Optional[int] = None


class IndexOperator(str, Enum):
    """Comparison operators for secondary-index expressions."""
    EQ = "EQ"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"

    @property
    def cql(self) -> str:
        return {"EQ": "=", "GT": ">", "GTE": ">=", "LT": "<", "LTE": "<="}[self.value]

    def matches(self, actual: Any, expected: Any) -> bool:
        if actual is None:
            return False
        if self is IndexOperator.EQ:
            return actual == expected
        if self is IndexOperator.GT:
            return actual > expected
        if self is IndexOperator.GTE:
            return actual >= expected
        if self is IndexOperator.LT:
            return actual < expected
        return actual <= expected


@dataclass(frozen=True)
class IndexExpression:
    column_name: Any
    value: Any
    operator: IndexOperator = IndexOperator.EQ


@dataclass(frozen=True)
class IndexClause:
    """Index expressions plus the primary-key window of one page."""
    expressions: tuple[IndexExpression, ...]
    start_key: Any = ""
    count: int = DEFAULT_COUNT


def create_index_expression(column_name: Any, value: Any, operator: IndexOperator | str = IndexOperator.EQ) -> IndexExpression:
    return IndexExpression(column_name, value, IndexOperator(operator))


def create_index_clause(expressions: Sequence[IndexExpression], start_key: Any = "", count: int = DEFAULT_COUNT) -> IndexClause:
    if not expressions:
        raise StoreValidationError("at least one index expression is required", field="expressions")
    return IndexClause(tuple(expressions), start_key, count)


@dataclass
class Mutation:
    """One queued write inside a batch."""
    kind: Literal["insert", "remove"]
    column_family: str
    key: Hashable
    values: dict[Any, Any] = field(default_factory=dict)
    columns: Optional[list[Any]] = None


class StoreDriver(ABC):
    """
    Asynchronous client for one keyspace.

    Rows are returned as ``OrderedDict`` in server order; an absent row is
    an empty mapping, never ``None``. I/O failures must surface as
    ``StoreTransportError`` so the executor can tell them apart.
    """

    # Operations the executor may route to a driver
    OPERATIONS = frozenset({
        "get",
        "multi_get",
        "insert",
        "remove",
        "batch_mutate",
        "get_indexed_slices",
        "ring",
    })

    keyspace: str

    @abstractmethod
    async def get(
        self,
        column_family: str,
        key: Hashable,
        *,
        columns: Optional[Sequence[Any]] = None,
        start: Any = "",
        finish: Any = "",
        count: int = DEFAULT_COUNT,
        reversed: bool = False,
        consistency: Any = None,
    ) -> "OrderedDict[Any, Any]":
        """Columns of one row, either the named ``columns`` or a slice."""

    @abstractmethod
    async def multi_get(
        self,
        column_family: str,
        keys: Sequence[Hashable],
        *,
        columns: Optional[Sequence[Any]] = None,
        start: Any = "",
        finish: Any = "",
        count: int = DEFAULT_COUNT,
        reversed: bool = False,
        consistency: Any = None,
    ) -> "OrderedDict[Hashable, OrderedDict[Any, Any]]":
        """One slice per key, keyed in request order."""

    @abstractmethod
    async def insert(self, column_family: str, key: Hashable, values: dict[Any, Any], *, consistency: Any = None) -> None:
        ...

    @abstractmethod
    async def remove(
        self,
        column_family: str,
        key: Hashable,
        columns: Optional[Sequence[Any]] = None,
        *,
        consistency: Any = None,
    ) -> None:
        """Delete the whole row, or only ``columns`` of it."""

    @abstractmethod
    async def batch_mutate(self, mutations: Sequence[Mutation], *, consistency: Any = None) -> None:
        """Apply all mutations atomically."""

    @abstractmethod
    async def get_indexed_slices(
        self,
        column_family: str,
        index_clause: IndexClause,
        columns: Optional[Sequence[Any]] = None,
        *,
        consistency: Any = None,
    ) -> "OrderedDict[Hashable, list[Column]]":
        """Rows matching the clause, at most ``index_clause.count``, starting at ``start_key`` inclusive."""

    @abstractmethod
    async def ring(self) -> list[dict[str, Any]]:
        """Describe the nodes this driver talks to."""

    @abstractmethod
    async def disconnect(self) -> None:
        ...
