"""
Pytest configuration and fixtures for the column store tests.

Provides:
- An in-memory cluster and driver with failure injection
- Configuration and store fixtures with cleanup
- Row data generators
"""

from collections import OrderedDict, defaultdict
from typing import Any

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from vertector_columnstore import (
    Column,
    ColumnModel,
    ColumnStore,
    ColumnStoreConfig,
    StoreDriver,
    StoreMetrics,
)

# Load environment variables for tests
load_dotenv()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require a running ScyllaDB)"
    )


# ============================================================================
# In-memory store
# ============================================================================

def _unbounded(bound: Any) -> bool:
    return bound in ("", b"", None)


class FakeCluster:
    """
    Shared state behind every FakeStoreDriver: the data, the call log and
    the failures to inject.

    ``failures`` is consumed one entry per driver call; ``connect_failures``
    one entry per connection attempt.
    """

    def __init__(self):
        # physical keyspace -> column family -> row key -> {column: value}
        self.tables: dict[str, dict[str, dict[Any, dict[Any, Any]]]] = defaultdict(lambda: defaultdict(dict))
        self.failures: list[Exception] = []
        self.connect_failures: list[Exception] = []
        self.calls: list[tuple[str, str, tuple, dict]] = []
        self.drivers: list["FakeStoreDriver"] = []

    async def connect(self, keyspace, config) -> "FakeStoreDriver":
        if self.connect_failures:
            raise self.connect_failures.pop(0)
        driver = FakeStoreDriver(self, keyspace, config)
        self.drivers.append(driver)
        return driver

    def calls_to(self, operation: str) -> list[tuple[str, str, tuple, dict]]:
        return [call for call in self.calls if call[1] == operation]

    def put_row(self, keyspace: str, column_family: str, key: Any, columns: dict[Any, Any]) -> None:
        self.tables[keyspace][column_family].setdefault(key, {}).update(columns)


class FakeStoreDriver(StoreDriver):
    """
    StoreDriver over FakeCluster.

    Columns and keys are returned in sorted order and slice bounds are
    inclusive, the way the real store pages.
    """

    def __init__(self, cluster: FakeCluster, keyspace: str, config):
        self.cluster = cluster
        self.keyspace = keyspace
        self.config = config
        self.connected = True

    def _record(self, operation: str, *args, **kwargs) -> None:
        self.cluster.calls.append((self.keyspace, operation, args, kwargs))
        if self.cluster.failures:
            raise self.cluster.failures.pop(0)

    def _table(self, column_family: str) -> dict[Any, dict[Any, Any]]:
        return self.cluster.tables[self.keyspace][column_family]

    def _slice(self, column_family, key, columns, start, finish, count, reversed):
        row = self._table(column_family).get(key, {})
        if columns is not None:
            return OrderedDict((name, row[name]) for name in sorted(columns) if name in row)

        names = sorted(row, reverse=reversed)
        if reversed:
            names = [n for n in names if (_unbounded(start) or n <= start) and (_unbounded(finish) or n >= finish)]
        else:
            names = [n for n in names if (_unbounded(start) or n >= start) and (_unbounded(finish) or n <= finish)]
        return OrderedDict((name, row[name]) for name in names[:count])

    async def get(self, column_family, key, *, columns=None, start="", finish="", count=100, reversed=False, consistency=None):
        self._record("get", column_family, key, columns=columns, start=start, finish=finish,
                     count=count, reversed=reversed, consistency=consistency)
        return self._slice(column_family, key, columns, start, finish, count, reversed)

    async def multi_get(self, column_family, keys, *, columns=None, start="", finish="", count=100, reversed=False, consistency=None):
        self._record("multi_get", column_family, list(keys), columns=columns, start=start, finish=finish,
                     count=count, reversed=reversed, consistency=consistency)
        return OrderedDict(
            (key, self._slice(column_family, key, columns, start, finish, count, reversed))
            for key in keys
        )

    async def insert(self, column_family, key, values, *, consistency=None):
        self._record("insert", column_family, key, values, consistency=consistency)
        self._table(column_family).setdefault(key, {}).update(values)

    async def remove(self, column_family, key, columns=None, *, consistency=None):
        self._record("remove", column_family, key, columns, consistency=consistency)
        self._remove(column_family, key, columns)

    def _remove(self, column_family, key, columns):
        table = self._table(column_family)
        if columns is None:
            table.pop(key, None)
            return
        row = table.get(key, {})
        for name in columns:
            row.pop(name, None)

    async def batch_mutate(self, mutations, *, consistency=None):
        self._record("batch_mutate", list(mutations), consistency=consistency)
        for mutation in mutations:
            if mutation.kind == "insert":
                self._table(mutation.column_family).setdefault(mutation.key, {}).update(mutation.values)
            else:
                self._remove(mutation.column_family, mutation.key, mutation.columns)

    async def get_indexed_slices(self, column_family, index_clause, columns=None, *, consistency=None):
        self._record("get_indexed_slices", column_family, index_clause, columns, consistency=consistency)
        rows = OrderedDict()
        for key in sorted(self._table(column_family)):
            if not _unbounded(index_clause.start_key) and key < index_clause.start_key:
                continue
            row = self._table(column_family)[key]
            if not all(e.operator.matches(row.get(e.column_name), e.value) for e in index_clause.expressions):
                continue
            rows[key] = [
                Column(name, row[name], 0)
                for name in sorted(row)
                if columns is None or name in columns
            ]
            if len(rows) == index_clause.count:
                break
        return rows

    async def ring(self):
        self._record("ring")
        return [{"address": server, "datacenter": "dc1", "rack": "rack1", "is_up": True}
                for server in self.config.servers]

    async def disconnect(self):
        self.connected = False


# ============================================================================
# Models
# ============================================================================

class User(ColumnModel):
    column_family = "users"


class Event(ColumnModel):
    column_family = "events"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def config():
    """Two-environment configuration with development active."""
    return ColumnStoreConfig.from_mapping(
        {
            "development": {"server": "127.0.0.1"},
            "production": {"servers": ["scylla1.example.com", "scylla2.example.com"]},
        },
        environment="development",
    )


@pytest.fixture
def fake_cluster():
    return FakeCluster()


@pytest_asyncio.fixture
async def store(config, fake_cluster):
    """
    Store over the in-memory cluster with "app" (default) and "audit" registered.

    Every connection is closed after the test.
    """
    store = ColumnStore(config, driver_factory=fake_cluster.connect, metrics=StoreMetrics())
    store.register(["app", "audit"])

    yield store

    await store.aclose()


@pytest.fixture
def users(store):
    return store.mapper(User)


# ============================================================================
# Test Data Generators
# ============================================================================

def wide_row(size: int) -> dict[str, int]:
    """A row with ``size`` zero-padded column names, so sorted order is numeric order."""
    return {f"col{i:05d}": i for i in range(size)}


@pytest.fixture
def sample_users():
    """Generate sample user rows for tests."""
    return {
        "user_001": {"name": "Alice Smith", "email": "alice@example.com", "role": "engineer"},
        "user_002": {"name": "Bob Johnson", "email": "bob@example.com", "role": "manager"},
        "user_003": {"name": "Charlie Brown", "email": "charlie@example.com", "role": "engineer"},
    }
