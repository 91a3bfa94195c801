"""
Tests for structured logging utilities.
"""

import json
import logging
import sys

import pytest

from vertector_columnstore.logging_utils import (
    PerformanceLogger,
    StructuredFormatter,
    keyspace_var,
    operation_var,
    setup_production_logging,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("vertector_columnstore.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestStructuredFormatter:
    """Test JSON output."""

    def test_base_fields(self):
        data = json.loads(StructuredFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "vertector_columnstore.test"
        assert data["message"] == "hello"
        assert "timestamp" in data

    def test_extra_fields(self):
        data = json.loads(StructuredFormatter().format(make_record(column_family="users", pages=3)))
        assert data["column_family"] == "users"
        assert data["pages"] == 3

    def test_context_fields(self):
        operation_token = operation_var.set("chunked_get")
        keyspace_token = keyspace_var.set("app")
        try:
            data = json.loads(StructuredFormatter().format(make_record()))
        finally:
            operation_var.reset(operation_token)
            keyspace_var.reset(keyspace_token)

        assert data["operation"] == "chunked_get"
        assert data["keyspace"] == "app"

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(StructuredFormatter().format(record))
        assert "ValueError: boom" in data["exception"]


@pytest.mark.unit
class TestPerformanceLogger:
    """Test operation timing."""

    @pytest.mark.asyncio
    async def test_logs_start_and_completion(self, caplog):
        logger = logging.getLogger("vertector_columnstore.test.perf")

        with caplog.at_level(logging.DEBUG, logger=logger.name):
            async with PerformanceLogger("chunked_get", logger=logger, level=logging.DEBUG, column_family="users") as perf:
                assert operation_var.get() == "chunked_get"
                perf.context["pages"] = 2

        start, done = caplog.records
        assert start.event == "operation_start"
        assert done.event == "operation_completed"
        assert done.pages == 2
        assert done.levelno == logging.DEBUG
        assert done.duration_ms >= 0
        assert operation_var.get() == ""

    @pytest.mark.asyncio
    async def test_logs_failure(self, caplog):
        logger = logging.getLogger("vertector_columnstore.test.perf")

        with caplog.at_level(logging.INFO, logger=logger.name):
            with pytest.raises(RuntimeError):
                async with PerformanceLogger("chunked_get", logger=logger):
                    raise RuntimeError("boom")

        failed = caplog.records[-1]
        assert failed.levelno == logging.ERROR
        assert failed.event == "operation_failed"
        assert failed.error_type == "RuntimeError"


@pytest.mark.unit
def test_setup_production_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_production_logging(level="WARNING", format="json")
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
