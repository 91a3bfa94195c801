"""
scylla-driver implementation of StoreDriver.

Column families are read through their CQL view as dynamic tables::

    CREATE TABLE <cf> (
        key <type>,
        column1 <type>,
        value <type>,
        PRIMARY KEY (key, column1)
    )

which is exactly how legacy column families appear to CQL. Secondary-index
lookups need an index on ``value``.
"""

import asyncio
import logging
import ssl
from collections import OrderedDict
from typing import Any, Hashable, Optional, Sequence

from cassandra import (
    AuthenticationFailed,
    ConfigurationException,
    CoordinationFailure,
    DriverException,
    InvalidRequest,
    OperationTimedOut,
    ReadFailure,
    ReadTimeout,
    RequestExecutionException,
    Unauthorized,
    Unavailable,
    WriteFailure,
    WriteTimeout,
)
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, EXEC_PROFILE_DEFAULT, ExecutionProfile, NoHostAvailable, Session
from cassandra.connection import ConnectionException
from cassandra.io.asyncioreactor import AsyncioConnection
from cassandra.policies import WhiteListRoundRobinPolicy
from cassandra.query import BatchStatement, BatchType, PreparedStatement

from vertector_columnstore.config import ConnectionConfig, TLSConfig
from vertector_columnstore.driver import (
    DEFAULT_COUNT,
    Column,
    IndexClause,
    Mutation,
    StoreDriver,
    validate_identifier,
)
from vertector_columnstore.errors import (
    ColumnStoreError,
    StoreAuthenticationError,
    StoreQueryError,
    StoreTimeoutError,
    StoreTransportError,
    StoreUnavailableError,
    StoreValidationError,
)

logger = logging.getLogger(__name__)

# Slice bounds meaning "no bound"
_UNBOUNDED = ("", b"", None)

_VERIFY_MODES = {
    "CERT_NONE": ssl.CERT_NONE,
    "CERT_OPTIONAL": ssl.CERT_OPTIONAL,
    "CERT_REQUIRED": ssl.CERT_REQUIRED,
}


def translate_driver_error(error: Exception, query: str | None = None) -> ColumnStoreError:
    """
    Map a scylla-driver (or socket) exception onto the store's taxonomy.

    Only connection-level failures become StoreTransportError; everything
    the server answered is reported as-is and never retried.
    """
    if isinstance(error, ColumnStoreError):
        return error
    if isinstance(error, (NoHostAvailable, ConnectionException, OSError)):
        return StoreTransportError("Connection to the store failed", original_error=error)
    if isinstance(error, (ReadTimeout, WriteTimeout)):
        operation = "read" if isinstance(error, ReadTimeout) else "write"
        return StoreTimeoutError(
            f"{operation.capitalize()} operation timed out",
            original_error=error,
            operation_type=operation
        )
    if isinstance(error, OperationTimedOut):
        return StoreTimeoutError("Client-side operation timeout", original_error=error)
    if isinstance(error, Unavailable):
        consistency = getattr(error, 'consistency', None)
        return StoreUnavailableError(
            original_error=error,
            consistency_level=str(consistency) if consistency is not None else None,
            required_replicas=getattr(error, 'required_replicas', None),
            alive_replicas=getattr(error, 'alive_replicas', None)
        )
    if isinstance(error, (ReadFailure, WriteFailure, CoordinationFailure)):
        return StoreQueryError("Coordination failure", original_error=error, query=query)
    if isinstance(error, (Unauthorized, AuthenticationFailed)):
        return StoreAuthenticationError(original_error=error)
    if isinstance(error, (InvalidRequest, ConfigurationException)):
        return StoreValidationError(f"Invalid query or configuration: {error}", original_error=error)
    if isinstance(error, RequestExecutionException):
        return StoreQueryError(f"Query execution failed: {error}", original_error=error, query=query)
    if isinstance(error, DriverException):
        return ColumnStoreError(f"Driver error: {error}", original_error=error)

    logger.error(f"Unexpected error talking to the store: {error}", exc_info=error)
    return ColumnStoreError(f"Unexpected error: {error}", original_error=error)


def _ssl_context(tls: TLSConfig) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    if tls.verify_mode == "CERT_NONE":
        context.check_hostname = False
    context.verify_mode = _VERIFY_MODES[tls.verify_mode]
    if tls.ca_cert_file:
        context.load_verify_locations(tls.ca_cert_file)
    if tls.cert_file:
        context.load_cert_chain(tls.cert_file, tls.key_file)
    return context


class CqlStoreDriver(StoreDriver):
    """
    One scylla-driver session bound to one keyspace.

    Node discovery is disabled: a whitelist load-balancing policy keeps all
    traffic on the configured servers, the registry decides the topology.

    Example:
        driver = await CqlStoreDriver.connect("accounts_development", ConnectionConfig(servers=["127.0.0.1"]))
        row = await driver.get("users", "alice", count=10)
        await driver.disconnect()
    """

    def __init__(self, cluster: Cluster, session: Session, keyspace: str):
        self.cluster = cluster
        self.session = session
        self.keyspace = keyspace
        self._prepared_statements: dict[str, PreparedStatement] = {}

    @classmethod
    async def connect(cls, keyspace: str, config: ConnectionConfig) -> "CqlStoreDriver":
        """
        Open a session on ``keyspace``.

        Raises:
            StoreTransportError: If no configured server can be reached
        """
        validate_identifier(keyspace, "keyspace")

        default_profile = ExecutionProfile(
            load_balancing_policy=WhiteListRoundRobinPolicy(config.servers),
            request_timeout=config.request_timeout,
        )
        cluster_config: dict[str, Any] = {
            "contact_points": config.servers,
            "port": config.port,
            "connect_timeout": config.connect_timeout,
            "compression": config.compression,
            "connection_class": AsyncioConnection,
            "execution_profiles": {EXEC_PROFILE_DEFAULT: default_profile},
        }
        if config.protocol_version:
            cluster_config["protocol_version"] = config.protocol_version
        if config.auth.enabled:
            cluster_config["auth_provider"] = PlainTextAuthProvider(
                username=config.auth.username,
                password=config.auth.resolve_password(),
            )
        if config.tls.enabled:
            cluster_config["ssl_context"] = _ssl_context(config.tls)

        cluster = Cluster(**cluster_config)
        loop = asyncio.get_running_loop()
        try:
            # connect() is synchronous, run it in executor once per connection
            session = await loop.run_in_executor(None, cluster.connect, keyspace)
        except Exception as e:
            await loop.run_in_executor(None, cluster.shutdown)
            raise translate_driver_error(e) from e

        logger.info(f"Connected to keyspace '{keyspace}' via {', '.join(config.servers)}")
        return cls(cluster, session, keyspace)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

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
        rows = await self._slice(column_family, key, columns, start, finish, count, reversed, consistency)
        return OrderedDict((row.column1, row.value) for row in rows)

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
        unique_keys = list(OrderedDict.fromkeys(keys))
        slices = await asyncio.gather(*(
            self.get(
                column_family,
                key,
                columns=columns,
                start=start,
                finish=finish,
                count=count,
                reversed=reversed,
                consistency=consistency,
            )
            for key in unique_keys
        ))
        return OrderedDict(zip(unique_keys, slices))

    async def get_indexed_slices(
        self,
        column_family: str,
        index_clause: IndexClause,
        columns: Optional[Sequence[Any]] = None,
        *,
        consistency: Any = None,
    ) -> "OrderedDict[Hashable, list[Column]]":
        """
        Rows matching ``index_clause``, at most ``index_clause.count`` of them.

        Each row carries at most ``DEFAULT_COUNT`` columns; columns past that
        are not paged in. Pass ``columns`` or read the row itself for more.
        """
        validate_identifier(column_family)
        primary, extra = index_clause.expressions[0], index_clause.expressions[1:]
        rows: OrderedDict[Hashable, list[Column]] = OrderedDict()
        start, inclusive = index_clause.start_key, True

        # Candidates come from the index on the first expression in token
        # order; any further expressions are checked against the fetched row.
        while len(rows) < index_clause.count:
            query = f"SELECT key FROM {column_family} WHERE column1 = ? AND value {primary.operator.cql} ?"
            parameters: list[Any] = [primary.column_name, primary.value]
            if start not in _UNBOUNDED:
                query += " AND token(key) >= token(?)" if inclusive else " AND token(key) > token(?)"
                parameters.append(start)
            query += " LIMIT ? ALLOW FILTERING"
            parameters.append(index_clause.count)

            candidates = await self._execute(query, parameters, consistency)
            for candidate in candidates:
                row = await self._row_columns(column_family, candidate.key, None if extra else columns, consistency)
                if extra:
                    values = {column.name: column.value for column in row}
                    if not all(e.operator.matches(values.get(e.column_name), e.value) for e in extra):
                        continue
                    if columns is not None:
                        wanted = set(columns)
                        row = [column for column in row if column.name in wanted]
                rows[candidate.key] = row
                if len(rows) == index_clause.count:
                    break

            if len(candidates) < index_clause.count:
                break
            start, inclusive = candidates[-1].key, False

        return rows

    async def ring(self) -> list[dict[str, Any]]:
        return [
            {
                "address": host.address,
                "datacenter": host.datacenter,
                "rack": host.rack,
                "is_up": host.is_up,
            }
            for host in self.cluster.metadata.all_hosts()
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, column_family: str, key: Hashable, values: dict[Any, Any], *, consistency: Any = None) -> None:
        if not values:
            return
        await self._execute_batch(
            await self._mutation_statements(Mutation("insert", column_family, key, dict(values))),
            BatchType.UNLOGGED,
            consistency
        )

    async def remove(
        self,
        column_family: str,
        key: Hashable,
        columns: Optional[Sequence[Any]] = None,
        *,
        consistency: Any = None,
    ) -> None:
        mutation = Mutation("remove", column_family, key, columns=list(columns) if columns is not None else None)
        await self._execute_batch(await self._mutation_statements(mutation), BatchType.UNLOGGED, consistency)

    async def batch_mutate(self, mutations: Sequence[Mutation], *, consistency: Any = None) -> None:
        statements = []
        for mutation in mutations:
            statements.extend(await self._mutation_statements(mutation))
        if statements:
            await self._execute_batch(statements, BatchType.LOGGED, consistency)

    async def disconnect(self) -> None:
        self._prepared_statements.clear()
        await asyncio.get_running_loop().run_in_executor(None, self.cluster.shutdown)
        logger.info(f"Disconnected from keyspace '{self.keyspace}'")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _slice(self, column_family, key, columns, start, finish, count, reversed, consistency, with_timestamp=False):
        validate_identifier(column_family)
        selected = "column1, value, writetime(value) AS ts" if with_timestamp else "column1, value"
        query = f"SELECT {selected} FROM {column_family} WHERE key = ?"
        parameters: list[Any] = [key]

        if columns is not None:
            if not columns:
                return []
            query += " AND column1 IN ?"
            parameters.append(list(columns))
        else:
            # For reversed slices start is the upper bound
            lower, upper = (finish, start) if reversed else (start, finish)
            if lower not in _UNBOUNDED:
                query += " AND column1 >= ?"
                parameters.append(lower)
            if upper not in _UNBOUNDED:
                query += " AND column1 <= ?"
                parameters.append(upper)
            if reversed:
                query += " ORDER BY column1 DESC"
            query += " LIMIT ?"
            parameters.append(count)

        return await self._execute(query, parameters, consistency)

    async def _row_columns(self, column_family, key, columns, consistency) -> list[Column]:
        rows = await self._slice(column_family, key, columns, "", "", DEFAULT_COUNT, False, consistency, with_timestamp=True)
        return [Column(row.column1, row.value, row.ts) for row in rows]

    async def _mutation_statements(self, mutation: Mutation) -> list[tuple[PreparedStatement, tuple]]:
        column_family = validate_identifier(mutation.column_family)
        if mutation.kind == "insert":
            prepared = await self._prepare(f"INSERT INTO {column_family} (key, column1, value) VALUES (?, ?, ?)")
            return [(prepared, (mutation.key, name, value)) for name, value in mutation.values.items()]
        if mutation.columns is None:
            prepared = await self._prepare(f"DELETE FROM {column_family} WHERE key = ?")
            return [(prepared, (mutation.key,))]
        prepared = await self._prepare(f"DELETE FROM {column_family} WHERE key = ? AND column1 = ?")
        return [(prepared, (mutation.key, name)) for name in mutation.columns]

    async def _prepare(self, query: str) -> PreparedStatement:
        prepared = self._prepared_statements.get(query)
        if prepared is None:
            try:
                prepared = await asyncio.get_running_loop().run_in_executor(None, self.session.prepare, query)
            except Exception as e:
                raise translate_driver_error(e, query) from e
            self._prepared_statements[query] = prepared
        return prepared

    async def _execute_batch(self, statements, batch_type: BatchType, consistency: Any) -> None:
        batch = BatchStatement(batch_type=batch_type)
        if consistency is not None:
            batch.consistency_level = consistency
        for prepared, parameters in statements:
            batch.add(prepared, parameters)
        await self._run(batch, None, "BATCH")

    async def _execute(self, query: str, parameters: Sequence[Any], consistency: Any) -> list:
        prepared = await self._prepare(query)
        bound = prepared.bind(tuple(parameters))
        if consistency is not None:
            bound.consistency_level = consistency
        return await self._run(bound, None, query)

    async def _run(self, statement, parameters, query_label: str) -> list:
        """
        Execute a statement and await its result.

        The driver's ResponseFuture completes on the driver's own I/O thread;
        it is bridged onto the caller's event loop with an asyncio.Future.
        """
        loop = asyncio.get_running_loop()
        asyncio_future = loop.create_future()

        def on_success(result):
            loop.call_soon_threadsafe(_settle, asyncio_future, result, None)

        def on_error(error):
            loop.call_soon_threadsafe(_settle, asyncio_future, None, error)

        try:
            response_future = self.session.execute_async(statement, parameters)
            response_future.add_callbacks(on_success, on_error)
            result = await asyncio_future
        except Exception as e:
            raise translate_driver_error(e, query_label) from e
        return list(result) if result else []


def _settle(future: asyncio.Future, result: Any, error: Exception | None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
