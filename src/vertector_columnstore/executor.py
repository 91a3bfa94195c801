"""
Operation executor: the single path from the data-access layer to a driver.

Every call resolves its keyspace's connection, runs the driver operation and
classifies the attempt. A transport failure triggers exactly one reconnect
of that keyspace followed by one more attempt; nothing else is retried.
"""

import asyncio
import inspect
import logging
import time
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt

from vertector_columnstore.driver import Mutation, StoreDriver
from vertector_columnstore.errors import StoreTransportError, StoreValidationError
from vertector_columnstore.observability import StoreMetrics, Tracer
from vertector_columnstore.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

# First attempt plus one retry after reconnecting
MAX_ATTEMPTS = 2

# Writes that are queued instead of executed while a batch is open
_BATCHABLE = {
    "insert": inspect.signature(StoreDriver.insert),
    "remove": inspect.signature(StoreDriver.remove),
}


class OperationOutcome(str, Enum):
    SUCCESS = "success"
    TRANSPORT_FAILURE = "transport_failure"
    FAILURE = "failure"


@dataclass
class AttemptResult:
    """What one attempt produced: a value, or the error that ended it."""
    outcome: OperationOutcome
    value: Any = None
    error: Optional[Exception] = None

    @property
    def is_transport_failure(self) -> bool:
        return self.outcome is OperationOutcome.TRANSPORT_FAILURE


@dataclass
class MutationBatch:
    """Writes queued inside ``OperationExecutor.batch``."""
    keyspace: str | None = None
    consistency: Any = None
    mutations: list[Mutation] = field(default_factory=list)
    owner: Optional[asyncio.Task] = None

    def add(self, mutation: Mutation) -> None:
        self.mutations.append(mutation)

    def __len__(self) -> int:
        return len(self.mutations)


_active_batch: ContextVar[Optional[MutationBatch]] = ContextVar("active_batch", default=None)


class OperationExecutor:
    """
    Runs driver operations against the registry's connections.

    Example:
        executor = OperationExecutor(registry)
        row = await executor.execute("get", "users", "alice", count=10)
        row = await executor.execute("get", "events", "e1", keyspace="audit")

        async with executor.batch():
            await executor.execute("insert", "users", "bob", {"name": "Bob"})
            await executor.execute("remove", "users", "carol")
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        metrics: StoreMetrics | None = None,
        tracer: Tracer | None = None,
    ):
        self.registry = registry
        self.metrics = metrics
        self.tracer = tracer or Tracer(enabled=False)

    async def execute(self, operation: str, *args: Any, keyspace: str | None = None, **kwargs: Any) -> Any:
        """
        Run ``operation`` on the connection for ``keyspace`` (default keyspace when omitted).

        Inside ``batch()`` inserts and removes are queued and return None.

        Raises:
            StoreValidationError: Unknown operation, or a write aimed at a
                different keyspace than the open batch
            StoreTransportError: The store was unreachable twice in a row
            ColumnStoreError: Any other failure, raised from the first attempt
        """
        if operation not in StoreDriver.OPERATIONS:
            raise StoreValidationError(
                f"unknown operation '{operation}'",
                field="operation",
                value=operation
            )

        batch = _active_batch.get()
        if batch is not None and batch.owner is asyncio.current_task() and operation in _BATCHABLE:
            self._queue(batch, operation, args, kwargs, keyspace)
            return None

        started = time.perf_counter()
        attributes = {
            "columnstore.operation": operation,
            "columnstore.keyspace": keyspace or self.registry.default_keyspace,
        }
        async with self.tracer.span(f"columnstore.{operation}", attributes) as span:
            result = await self._run_with_retry(operation, args, kwargs, keyspace)

            if self.metrics:
                self.metrics.record_operation(operation, result.outcome.value, time.perf_counter() - started)
            if span is not None:
                span.set_attribute("columnstore.outcome", result.outcome.value)

            if result.outcome is not OperationOutcome.SUCCESS:
                raise result.error
            return result.value

    @asynccontextmanager
    async def batch(self, consistency: Any = None, keyspace: str | None = None) -> AsyncIterator[MutationBatch]:
        """
        Queue inserts and removes, then submit them as one ``batch_mutate``.

        Nothing is submitted when the block raises or queues nothing.

        Raises:
            StoreValidationError: If a batch is already open in this task
        """
        if _active_batch.get() is not None:
            raise StoreValidationError("batches cannot be nested", field="batch")

        batch = MutationBatch(keyspace=keyspace, consistency=consistency, owner=asyncio.current_task())
        token = _active_batch.set(batch)
        try:
            yield batch
        finally:
            _active_batch.reset(token)

        if batch.mutations:
            logger.debug(f"Submitting batch of {len(batch)} mutations")
            await self.execute("batch_mutate", batch.mutations, consistency=consistency, keyspace=keyspace)

    async def _run_with_retry(self, operation, args, kwargs, keyspace) -> AttemptResult:
        result = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            retry=retry_if_result(lambda r: r.is_transport_failure),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        ):
            with attempt:
                retrying = attempt.retry_state.attempt_number > 1
                if retrying:
                    logger.warning(
                        f"Transport failure during '{operation}', reconnecting and retrying once",
                        extra={"keyspace": keyspace or self.registry.default_keyspace}
                    )
                result = await self._attempt(operation, args, kwargs, keyspace, reconnect=retrying)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
        return result

    async def _attempt(self, operation, args, kwargs, keyspace, reconnect: bool = False) -> AttemptResult:
        # A failed reconnect is classified like any other failed attempt
        try:
            if reconnect:
                await self.registry.reconnect(keyspace)
            driver = await self.registry.connection_for(keyspace)
            value = await getattr(driver, operation)(*args, **kwargs)
        except StoreTransportError as e:
            return AttemptResult(OperationOutcome.TRANSPORT_FAILURE, error=e)
        except Exception as e:
            return AttemptResult(OperationOutcome.FAILURE, error=e)
        return AttemptResult(OperationOutcome.SUCCESS, value=value)

    def _queue(self, batch: MutationBatch, operation: str, args, kwargs, keyspace: str | None) -> None:
        default = self.registry.default_keyspace
        if (keyspace or default) != (batch.keyspace or default):
            raise StoreValidationError(
                "a batch can only hold writes for its own keyspace",
                field="keyspace",
                value=keyspace
            )

        arguments = _BATCHABLE[operation].bind(None, *args, **kwargs).arguments
        if operation == "insert":
            mutation = Mutation("insert", arguments["column_family"], arguments["key"], dict(arguments["values"]))
        else:
            columns = arguments.get("columns")
            mutation = Mutation(
                "remove",
                arguments["column_family"],
                arguments["key"],
                columns=list(columns) if columns is not None else None
            )
        batch.add(mutation)
