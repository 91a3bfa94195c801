"""
Exception taxonomy for the column store data-access layer.

Every error carries an optional ``original_error`` (usually a scylla-driver
exception) and logs itself with full context when raised, so call sites
only need to raise.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class ColumnStoreError(Exception):
    """
    Base exception for column store errors.

    Wraps underlying driver exceptions with additional context
    and ensures proper logging.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """
        Initialize store error.

        Args:
            message: Human-readable error message
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error
        self.message = message

        if original_error:
            logger.error(
                f"{type(self).__name__}: {message}",
                exc_info=original_error,
                extra={
                    "error_type": type(original_error).__name__,
                    "error_message": str(original_error)
                }
            )
        else:
            logger.error(f"{type(self).__name__}: {message}")

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, original_error={self.original_error!r})"


class InvalidKeyspaceError(ColumnStoreError):
    """
    Raised when a keyspace is unknown, malformed, or the requested action is
    forbidden against the default keyspace.

    Never retried.
    """

    def __init__(self, message: str, keyspace: Any = None):
        self.keyspace = keyspace
        super().__init__(message)


class MissingConfigurationError(ColumnStoreError):
    """
    Raised when the active environment has no configuration section.

    Detected lazily, on the first connection attempt, not at load time.
    """

    def __init__(self, environment: str):
        self.environment = environment
        super().__init__(f"Column store config is missing a '{environment}' section")


class StoreTransportError(ColumnStoreError):
    """
    Raised when the connection to the store fails at the I/O level.

    This is the only failure the executor recovers from, with a single
    reconnect-and-retry. When it reaches the caller the operation may have
    partially completed.
    """

    def __init__(self, message: str = "Transport failure talking to the store", original_error: Exception | None = None):
        super().__init__(message, original_error)


class StoreQueryError(ColumnStoreError):
    """Raised when the server rejects or fails to execute a request."""

    def __init__(self, message: str, original_error: Exception | None = None, query: str | None = None):
        self.query = query
        if query:
            message = f"{message} [Query: {query[:100]}...]"
        super().__init__(message, original_error)


class StoreTimeoutError(ColumnStoreError):
    """
    Raised when replicas fail to answer before the server-side timeout.

    Not retried by the executor: the write may already be applied.
    """

    def __init__(
        self,
        message: str = "Operation timed out",
        original_error: Exception | None = None,
        operation_type: str | None = None
    ):
        self.operation_type = operation_type
        if operation_type:
            message = f"{message} (operation={operation_type})"
        super().__init__(message, original_error)


class StoreUnavailableError(ColumnStoreError):
    """Raised when not enough live replicas exist for the consistency level."""

    def __init__(
        self,
        message: str = "Required replicas unavailable",
        original_error: Exception | None = None,
        consistency_level: str | None = None,
        required_replicas: int | None = None,
        alive_replicas: int | None = None
    ):
        self.consistency_level = consistency_level
        self.required_replicas = required_replicas
        self.alive_replicas = alive_replicas

        details = []
        if consistency_level:
            details.append(f"consistency={consistency_level}")
        if required_replicas is not None and alive_replicas is not None:
            details.append(f"required={required_replicas}, alive={alive_replicas}")
        if details:
            message = f"{message} ({', '.join(details)})"

        super().__init__(message, original_error)


class StoreAuthenticationError(ColumnStoreError):
    """Raised when authentication or authorization fails."""

    def __init__(
        self,
        message: str = "Authentication or authorization failed",
        original_error: Exception | None = None,
        username: str | None = None
    ):
        self.username = username
        if username:
            message = f"{message} for user '{username}'"
        super().__init__(message, original_error)


class StoreValidationError(ColumnStoreError):
    """
    Raised when a caller passes malformed input.

    This includes:
    - Invalid column family identifiers
    - Unknown driver operations
    - Nested batches
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None, original_error: Exception | None = None):
        self.field = field
        self.value = value
        if field:
            message = f"Validation error for '{field}': {message}"
        super().__init__(message, original_error)
