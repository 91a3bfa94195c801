"""
ColumnStore: the explicitly constructed handle that ties configuration,
connections, execution and observability together.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Sequence

from vertector_columnstore.config import ColumnStoreConfig, ConnectionConfig, load_config_from_env
from vertector_columnstore.driver import StoreDriver
from vertector_columnstore.executor import OperationExecutor
from vertector_columnstore.mapper import M, RowMapper
from vertector_columnstore.observability import StoreMetrics, Tracer
from vertector_columnstore.paging import PagedReader
from vertector_columnstore.registry import ConnectionRegistry, DriverFactory

logger = logging.getLogger(__name__)


async def connect_cql(keyspace: str, config: ConnectionConfig) -> StoreDriver:
    """Default driver factory: a scylla-driver session on ``keyspace``."""
    from vertector_columnstore.cql import CqlStoreDriver

    return await CqlStoreDriver.connect(keyspace, config)


class ColumnStore:
    """
    Data-access context for one application.

    Owns the keyspace registry, the operation executor, the paged reader
    and the metrics/tracing used by all of them. Nothing is global: two
    stores never share connections.

    Example:
        async with ColumnStore.from_config(config, keyspaces=["accounts"]) as store:
            users = store.mapper(User)
            user = await users.get("alice")
    """

    def __init__(
        self,
        config: ColumnStoreConfig,
        *,
        driver_factory: DriverFactory | None = None,
        metrics: StoreMetrics | None = None,
        enable_tracing: bool = False,
    ):
        self.config = config
        self.metrics = metrics or StoreMetrics()
        self.tracer = Tracer(enabled=enable_tracing)
        self.registry = ConnectionRegistry(config, driver_factory or connect_cql, metrics=self.metrics)
        self.executor = OperationExecutor(self.registry, metrics=self.metrics, tracer=self.tracer)
        self.reader = PagedReader(self.executor)
        self._mappers: dict[type, RowMapper] = {}

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls,
        config: ColumnStoreConfig | None = None,
        keyspaces: str | Sequence[str] = (),
        *,
        driver_factory: DriverFactory | None = None,
        enable_tracing: bool = False,
    ) -> AsyncIterator["ColumnStore"]:
        """
        Create a store, register ``keyspaces`` and close every connection on exit.

        Args:
            config: Configuration; loaded from ``COLUMNSTORE_*`` variables when omitted
            keyspaces: Keyspaces to register; the first becomes the default
            driver_factory: Builds drivers; scylla-driver sessions by default
            enable_tracing: Wrap every operation in an OpenTelemetry span

        Yields:
            ColumnStore instance
        """
        store = cls(
            config or load_config_from_env(),
            driver_factory=driver_factory,
            enable_tracing=enable_tracing,
        )
        if keyspaces:
            store.register(list(keyspaces) if not isinstance(keyspaces, str) else keyspaces)
        try:
            yield store
        finally:
            await store.aclose()

    def register(self, keyspaces: str | list[str] | tuple[str, ...]) -> list[str]:
        return self.registry.register(keyspaces)

    def mapper(self, model_cls: type[M]) -> RowMapper[M]:
        """The RowMapper for ``model_cls``, created once per store."""
        mapper = self._mappers.get(model_cls)
        if mapper is None:
            mapper = RowMapper(model_cls, self.reader)
            self._mappers[model_cls] = mapper
        return mapper

    async def health_check(self, keyspace: str | None = None) -> dict[str, Any]:
        """
        Check that the store answers for ``keyspace`` (default keyspace when omitted).

        Returns:
            Dictionary with status ("healthy" | "unhealthy"), timestamp,
            latency_ms, keyspace and the ring members seen
        """
        start_time = time.perf_counter()
        result: dict[str, Any] = {
            "keyspace": keyspace or self.registry.default_keyspace,
            "environment": self.config.environment,
        }
        try:
            ring = await self.executor.execute("ring", keyspace=keyspace)
            result["status"] = "healthy"
            result["nodes"] = ring
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            result["status"] = "unhealthy"
            result["error"] = str(e)

        result["latency_ms"] = (time.perf_counter() - start_time) * 1000
        result["timestamp"] = datetime.now(timezone.utc).isoformat()
        return result

    async def export_prometheus_metrics(self) -> str:
        return self.metrics.export_prometheus()

    async def aclose(self) -> None:
        """Close every open connection, the default keyspace included."""
        await self.registry.close()

    async def __aenter__(self) -> "ColumnStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
