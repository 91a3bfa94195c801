"""
Row mapper: reads and writes one column family on behalf of a model class.
"""

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, Hashable, Optional, Sequence, TypeVar

from vertector_columnstore.driver import create_index_expression
from vertector_columnstore.executor import OperationExecutor
from vertector_columnstore.model import ColumnModel
from vertector_columnstore.paging import PagedReader, ReadOptions

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=ColumnModel)


class RowMapper(Generic[M]):
    """
    Typed access to the column family bound by ``model_cls``.

    Example:
        users = RowMapper(User, reader)
        user = await users.get("alice")
        admins = await users.get_indexed("role", "admin")
        name, email = await users.get_columns("alice", ["name", "email"])
    """

    def __init__(self, model_cls: type[M], reader: PagedReader):
        self.model_cls = model_cls
        self.reader = reader

    @property
    def column_family(self) -> str:
        return self.model_cls.column_family

    @property
    def executor(self) -> OperationExecutor:
        return self.reader.executor

    def new(self, key: Hashable, attributes: Optional[dict[Any, Any]] = None) -> M:
        """Build an unsaved instance bound to this mapper."""
        return self.model_cls(key, attributes, mapper=self)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def all(
        self,
        key: Hashable | list[Hashable] | set[Hashable],
        options: ReadOptions | None = None,
        keyspace: str | None = None,
    ) -> "OrderedDict[Any, Any]":
        """Raw row (every column unless bounded), or raw rows keyed by row key for a list or set of keys."""
        return await self.reader.chunked_get(self.column_family, key, options, keyspace=keyspace)

    async def get(self, key: Hashable, options: ReadOptions | None = None, keyspace: str | None = None) -> M | None:
        """The row as a model, or None when it has no columns."""
        attributes = await self.all(key, options, keyspace=keyspace)
        if not attributes:
            return None
        return self.new(key, dict(attributes))

    async def get_indexed(
        self,
        index: Any,
        value: Any,
        columns: Optional[Sequence[Any]] = None,
        consistency: Any = None,
        keyspace: str | None = None,
    ) -> list[M]:
        """
        Every row whose indexed column ``index`` equals ``value``.

        Args:
            index: Name of the indexed column
            value: Value each row must match
            columns: Columns to load, all by default
            consistency: Read consistency level

        Returns:
            Models holding only the columns retrieved; empty when nothing matches
        """
        expression = create_index_expression(index, value, "EQ")
        rows = await self.reader.chunked_indexed_get(
            self.column_family, [expression], columns, consistency=consistency, keyspace=keyspace
        )
        return [
            self.new(row_key, {column.name: column.value for column in row})
            for row_key, row in rows.items()
        ]

    async def get_columns(
        self,
        key: Hashable,
        columns: Sequence[Any],
        consistency: Any = None,
        keyspace: str | None = None,
    ) -> list[Any]:
        """Values of ``columns`` in the order requested, None for columns the row lacks."""
        columns = list(columns)
        row = await self.executor.execute(
            "get",
            self.column_family,
            key,
            columns=columns,
            count=max(len(columns), 1),
            consistency=consistency,
            keyspace=keyspace,
        )
        return [row.get(column) for column in columns]

    async def ring(self, keyspace: str | None = None) -> list[dict[str, Any]]:
        return await self.executor.execute("ring", keyspace=keyspace)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, key: Hashable, values: dict[Any, Any], consistency: Any = None, keyspace: str | None = None) -> None:
        await self.executor.execute("insert", self.column_family, key, values, consistency=consistency, keyspace=keyspace)

    async def remove(
        self,
        key: Hashable,
        columns: Optional[Sequence[Any]] = None,
        consistency: Any = None,
        keyspace: str | None = None,
    ) -> None:
        """Delete the row, or only ``columns`` of it."""
        await self.executor.execute("remove", self.column_family, key, columns, consistency=consistency, keyspace=keyspace)

    @asynccontextmanager
    async def batch(self, consistency: Any = None, keyspace: str | None = None) -> AsyncIterator["RowMapper[M]"]:
        """
        Queue inserts and removes made in the block and send them atomically on exit.

        ``consistency`` overrides whatever individual writes ask for.
        """
        async with self.executor.batch(consistency=consistency, keyspace=keyspace):
            yield self

