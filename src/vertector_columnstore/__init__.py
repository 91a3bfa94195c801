"""
Vertector Column Store - async data-access layer for wide-column stores.

This package provides keyspace-aware connection management with a single
reconnect-and-retry on transport failures, paged reads that assemble
complete rows and index scans, and a small row-to-model mapping, on top of
scylla-driver.
"""

from vertector_columnstore.store import ColumnStore

from vertector_columnstore.registry import ConnectionRegistry

from vertector_columnstore.executor import (
    OperationExecutor,
    OperationOutcome,
    AttemptResult,
    MutationBatch,
)

from vertector_columnstore.paging import (
    PagedReader,
    ReadOptions,
    BoundedRead,
    FullScan,
)

from vertector_columnstore.mapper import RowMapper

from vertector_columnstore.model import (
    ColumnModel,
    ColumnKey,
    NamedColumn,
    LongColumn,
)

from vertector_columnstore.driver import (
    DEFAULT_COUNT,
    StoreDriver,
    Column,
    IndexOperator,
    IndexExpression,
    IndexClause,
    Mutation,
    create_index_expression,
    create_index_clause,
)

from vertector_columnstore.errors import (
    ColumnStoreError,
    InvalidKeyspaceError,
    MissingConfigurationError,
    StoreTransportError,
    StoreQueryError,
    StoreTimeoutError,
    StoreUnavailableError,
    StoreAuthenticationError,
    StoreValidationError,
)

from vertector_columnstore.config import (
    ColumnStoreConfig,
    ConnectionConfig,
    AuthConfig,
    TLSConfig,
    load_config_from_env,
)

from vertector_columnstore.observability import (
    Tracer,
    StoreMetrics,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "ColumnStore",
    "ConnectionRegistry",
    "OperationExecutor",
    "OperationOutcome",
    "AttemptResult",
    "MutationBatch",
    "PagedReader",
    "ReadOptions",
    "BoundedRead",
    "FullScan",
    "RowMapper",
    "ColumnModel",
    "ColumnKey",
    "NamedColumn",
    "LongColumn",
    # Driver interface
    "DEFAULT_COUNT",
    "StoreDriver",
    "Column",
    "IndexOperator",
    "IndexExpression",
    "IndexClause",
    "Mutation",
    "create_index_expression",
    "create_index_clause",
    # Errors
    "ColumnStoreError",
    "InvalidKeyspaceError",
    "MissingConfigurationError",
    "StoreTransportError",
    "StoreQueryError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    "StoreAuthenticationError",
    "StoreValidationError",
    # Configuration
    "ColumnStoreConfig",
    "ConnectionConfig",
    "AuthConfig",
    "TLSConfig",
    "load_config_from_env",
    # Observability
    "Tracer",
    "StoreMetrics",
]
