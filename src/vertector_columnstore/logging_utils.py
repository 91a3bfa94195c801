"""
Structured logging utilities for production environments.

Provides:
- Structured JSON logging
- Operation/keyspace context tracking
- Performance logging
"""

import json
import logging
import time
from typing import Any
from contextvars import ContextVar

# Context variables for operation tracking
operation_var: ContextVar[str] = ContextVar("operation", default="")
keyspace_var: ContextVar[str] = ContextVar("keyspace", default="")

# LogRecord attributes that are not user supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format with consistent fields:
    - timestamp
    - level
    - logger
    - message
    - operation / keyspace (if set in the current context)
    - any ``extra`` fields passed to the logging call
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        keyspace = keyspace_var.get()
        if keyspace:
            log_data["keyspace"] = keyspace

        for name, value in record.__dict__.items():
            if name not in _RESERVED_ATTRS and not name.startswith("_"):
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """
    Performance logging context manager.

    Logs operation start, then duration and outcome on exit. Extra fields
    can be attached while the block runs through ``context``.

    Example:
        async with PerformanceLogger("chunked_get", logger=logger, column_family="users") as perf:
            ...
            perf.context["pages"] = pages
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        level: int = logging.INFO,
        **context: Any
    ):
        """
        Initialize performance logger.

        Args:
            operation: Operation name
            logger: Logger instance
            level: Level for the start/completed records (failures log at ERROR)
            **context: Additional context fields
        """
        self.operation = operation
        self.logger = logger
        self.level = level
        self.context = context
        self.start_time = None
        self._token = None

    async def __aenter__(self):
        self.start_time = time.perf_counter()
        self._token = operation_var.set(self.operation)

        self.logger.log(
            self.level,
            f"Starting operation: {self.operation}",
            extra={"event": "operation_start", **self.context}
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                f"Operation failed: {self.operation}",
                extra={
                    "event": "operation_failed",
                    "duration_ms": round(duration_ms, 2),
                    "error_type": exc_type.__name__,
                    "error": str(exc_val),
                    **self.context
                }
            )
        else:
            self.logger.log(
                self.level,
                f"Operation completed: {self.operation}",
                extra={
                    "event": "operation_completed",
                    "duration_ms": round(duration_ms, 2),
                    **self.context
                }
            )

        operation_var.reset(self._token)


def setup_production_logging(
    level: str = "INFO",
    format: str = "json"
) -> None:
    """
    Setup production-ready logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Format type ("json" or "text")

    Example:
        setup_production_logging(level="INFO", format="json")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if format.lower() == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        )

    root_logger.addHandler(handler)
