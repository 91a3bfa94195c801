"""
Paged reads that stitch server-side page limits into complete results.

Wide rows and index scans are capped per request; ``PagedReader`` keeps
asking for the next page, starting from the last key seen, until the
server returns a short page.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Hashable, Optional, Sequence, Union

from vertector_columnstore.driver import DEFAULT_COUNT, IndexExpression, create_index_clause
from vertector_columnstore.errors import StoreValidationError
from vertector_columnstore.executor import OperationExecutor
from vertector_columnstore.logging_utils import PerformanceLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundedRead:
    """Read at most ``count`` columns with a single request."""
    count: int = DEFAULT_COUNT

    def __post_init__(self):
        if self.count < 1:
            raise StoreValidationError("must be at least 1", field="count", value=self.count)


@dataclass(frozen=True)
class FullScan:
    """
    Read every column, ``count`` per request.

    Each page repeats the last column of the one before it, so a page has
    to hold at least two columns to make progress.
    """
    count: int = DEFAULT_COUNT

    def __post_init__(self):
        if self.count < 2:
            raise StoreValidationError("must be at least 2 for a full scan", field="count", value=self.count)


@dataclass
class ReadOptions:
    """
    Shape of a row read.

    ``start`` and ``finish`` bound the column slice (``""`` is open). With
    ``reversed`` the slice runs from ``start`` downwards.
    """
    read: Union[BoundedRead, FullScan] = field(default_factory=FullScan)
    start: Any = ""
    finish: Any = ""
    reversed: bool = False
    consistency: Any = None

    def slice_arguments(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "finish": self.finish,
            "count": self.read.count,
            "reversed": self.reversed,
            "consistency": self.consistency,
        }


class PagedReader:
    """
    Chunked row and index reads on top of an OperationExecutor.

    Pages are fetched strictly one after another. Each page starts at the
    last key of the previous one (bounds are inclusive), so the overlapping
    entry is merged without overwriting what was already read.
    """

    def __init__(self, executor: OperationExecutor):
        self.executor = executor

    @property
    def metrics(self):
        return self.executor.metrics

    async def chunked_get(
        self,
        column_family: str,
        key: Hashable | list[Hashable] | set[Hashable],
        options: ReadOptions | None = None,
        keyspace: str | None = None,
    ) -> "OrderedDict[Any, Any]":
        """
        Read one row completely, or several rows with a single request.

        Args:
            column_family: Column family to read
            key: A row key, or a list or set of row keys. Tuples are
                single composite keys.
            options: Slice shape; a full scan from the first column by default
            keyspace: Keyspace override (default keyspace when omitted)

        Returns:
            Column name to value in server order, or for several keys,
            row key to such a mapping. Missing rows come back empty.
        """
        options = options or ReadOptions()

        if isinstance(key, (list, set, frozenset)):
            return await self.executor.execute(
                "multi_get", column_family, list(key), keyspace=keyspace, **options.slice_arguments()
            )

        if isinstance(options.read, BoundedRead):
            return await self.executor.execute(
                "get", column_family, key, keyspace=keyspace, **options.slice_arguments()
            )

        count = options.read.count
        result: OrderedDict[Any, Any] = OrderedDict()
        start = options.start
        pages = 0

        async with PerformanceLogger(
            "chunked_get", logger=logger, level=logging.DEBUG, column_family=column_family
        ) as perf:
            while True:
                chunk = await self.executor.execute(
                    "get",
                    column_family,
                    key,
                    keyspace=keyspace,
                    start=start,
                    finish=options.finish,
                    count=count,
                    reversed=options.reversed,
                    consistency=options.consistency,
                )
                pages += 1
                if self.metrics:
                    self.metrics.record_page("chunked_get")

                for name, value in chunk.items():
                    result.setdefault(name, value)

                if len(chunk) < count:
                    break
                last = next(reversed(chunk))
                if pages > 1 and last == start:
                    logger.warning(f"Page ended on its own start column in '{column_family}', stopping")
                    break
                start = last

            perf.context["pages"] = pages
            perf.context["columns"] = len(result)

        return result

    async def chunked_indexed_get(
        self,
        column_family: str,
        expressions: Sequence[IndexExpression],
        columns: Optional[Sequence[Any]] = None,
        consistency: Any = None,
        keyspace: str | None = None,
    ) -> "OrderedDict[Hashable, list]":
        """
        Every row matching the index expressions.

        Keys are walked with a fresh index clause per page, ``DEFAULT_COUNT``
        rows at a time, starting at the last key of the previous page.

        Returns:
            Row key to list of Column, in server order
        """
        result: OrderedDict[Hashable, list] = OrderedDict()
        start_key: Any = ""
        pages = 0

        async with PerformanceLogger(
            "chunked_indexed_get", logger=logger, level=logging.DEBUG, column_family=column_family
        ) as perf:
            while True:
                clause = create_index_clause(expressions, start_key=start_key, count=DEFAULT_COUNT)
                chunk = await self.executor.execute(
                    "get_indexed_slices",
                    column_family,
                    clause,
                    columns,
                    consistency=consistency,
                    keyspace=keyspace,
                )
                pages += 1
                if self.metrics:
                    self.metrics.record_page("chunked_indexed_get")

                for row_key, row in chunk.items():
                    result.setdefault(row_key, row)

                if len(chunk) < DEFAULT_COUNT:
                    break
                last = next(reversed(chunk))
                if pages > 1 and last == start_key:
                    logger.warning(f"Index page ended on its own start key in '{column_family}', stopping")
                    break
                start_key = last

            perf.context["pages"] = pages
            perf.context["rows"] = len(result)

        return result
