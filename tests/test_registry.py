"""
Tests for the keyspace registry.

Tests:
- Registration and default selection
- Lazy connection building and caching
- Disconnect guard and lifecycle
- Reconnect
"""

import pytest

from vertector_columnstore import (
    ColumnStoreConfig,
    ConnectionRegistry,
    InvalidKeyspaceError,
    MissingConfigurationError,
    StoreMetrics,
)


@pytest.fixture
def registry(config, fake_cluster):
    return ConnectionRegistry(config, fake_cluster.connect, metrics=StoreMetrics())


@pytest.mark.unit
class TestRegistration:
    """Test keyspace registration and the default keyspace."""

    def test_first_registered_becomes_default(self, registry):
        registry.register(["a", "b"])
        assert registry.default_keyspace == "a"

    def test_later_registration_keeps_default(self, registry):
        registry.register(["a", "b"])
        registry.register("c")
        assert registry.default_keyspace == "a"
        assert set(registry.keyspaces) == {"a", "b", "c"}

    def test_single_string(self, registry):
        assert registry.register("solo") == ["solo"]
        assert registry.default_keyspace == "solo"

    def test_duplicates_are_not_added_twice(self, registry):
        registry.register(["a", "b"])
        assert registry.register(["b", "c"]) == ["c"]
        assert list(registry.keyspaces) == ["a", "b", "c"]

    def test_tuple_accepted(self, registry):
        registry.register(("x", "y"))
        assert registry.default_keyspace == "x"

    @pytest.mark.parametrize("bad", [42, None, {"a": 1}, ["ok", 3]])
    def test_invalid_input_rejected(self, registry, bad):
        with pytest.raises(InvalidKeyspaceError):
            registry.register(bad)
        assert registry.keyspaces == {}

    def test_invalid_identifier_rejected(self, registry):
        with pytest.raises(InvalidKeyspaceError):
            registry.register("drop table; --")

    def test_set_default_requires_registration(self, registry):
        registry.register(["a", "b"])
        registry.set_default("b")
        assert registry.default_keyspace == "b"

        with pytest.raises(InvalidKeyspaceError):
            registry.set_default("unknown")
        assert registry.default_keyspace == "b"

    def test_default_setter(self, registry):
        registry.register(["a", "b"])
        registry.default_keyspace = "b"
        assert registry.default_keyspace == "b"

    def test_physical_name_uses_environment(self, registry):
        assert registry.physical_name("accounts") == "accounts_development"


@pytest.mark.unit
class TestConnections:
    """Test lazy connection building."""

    @pytest.mark.asyncio
    async def test_connects_lazily_to_physical_keyspace(self, registry, fake_cluster):
        registry.register("app")
        assert fake_cluster.drivers == []

        driver = await registry.connection_for()
        assert driver.keyspace == "app_development"
        assert driver.config.servers == ["127.0.0.1"]
        assert registry.keyspaces == {"app": True}

    @pytest.mark.asyncio
    async def test_connection_is_cached(self, registry, fake_cluster):
        registry.register("app")
        first = await registry.connection_for("app")
        second = await registry.connection_for()
        assert first is second
        assert len(fake_cluster.drivers) == 1

    @pytest.mark.asyncio
    async def test_no_default_raises(self, registry):
        with pytest.raises(InvalidKeyspaceError):
            await registry.connection_for()

    @pytest.mark.asyncio
    async def test_unregistered_raises(self, registry):
        registry.register("app")
        with pytest.raises(InvalidKeyspaceError):
            await registry.connection_for("other")

    @pytest.mark.asyncio
    async def test_missing_environment_section_detected_on_first_use(self, fake_cluster):
        config = ColumnStoreConfig.from_mapping({"production": {"server": "db1"}}, environment="staging")
        registry = ConnectionRegistry(config, fake_cluster.connect)
        registry.register("app")

        with pytest.raises(MissingConfigurationError) as exc_info:
            await registry.connection_for()
        assert "'staging'" in str(exc_info.value)
        assert fake_cluster.drivers == []


@pytest.mark.unit
class TestDisconnect:
    """Test disconnect lifecycle."""

    @pytest.mark.asyncio
    async def test_default_keyspace_cannot_be_disconnected(self, registry):
        registry.register(["app", "audit"])
        driver = await registry.connection_for()

        with pytest.raises(InvalidKeyspaceError):
            await registry.disconnect("app")
        assert driver.connected
        assert registry.keyspaces["app"] is True

    @pytest.mark.asyncio
    async def test_disconnect_closes_and_forgets(self, registry):
        registry.register(["app", "audit"])
        driver = await registry.connection_for("audit")

        assert await registry.disconnect("audit") is True
        assert not driver.connected
        assert "audit" not in registry.keyspaces

        with pytest.raises(InvalidKeyspaceError):
            await registry.connection_for("audit")

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, registry):
        registry.register("app")
        assert await registry.disconnect("never_seen") is True
        assert await registry.disconnect("never_seen") is True

    @pytest.mark.asyncio
    async def test_disconnect_registered_but_unconnected(self, registry):
        registry.register(["app", "audit"])
        assert await registry.disconnect("audit") is True
        assert list(registry.keyspaces) == ["app"]

    @pytest.mark.asyncio
    async def test_disconnect_all_keeps_default(self, registry):
        registry.register(["app", "audit", "billing"])
        default = await registry.connection_for()
        audit = await registry.connection_for("audit")
        billing = await registry.connection_for("billing")

        await registry.disconnect_all()

        assert list(registry.keyspaces) == ["app"]
        assert default.connected
        assert not audit.connected
        assert not billing.connected

    @pytest.mark.asyncio
    async def test_close_disconnects_default_too(self, registry):
        registry.register(["app", "audit"])
        default = await registry.connection_for()

        await registry.close()

        assert not default.connected
        assert registry.keyspaces == {"app": False, "audit": False}


@pytest.mark.unit
class TestReconnect:
    """Test connection replacement."""

    @pytest.mark.asyncio
    async def test_reconnect_replaces_default_connection(self, registry, fake_cluster):
        registry.register("app")
        old = await registry.connection_for()

        assert await registry.reconnect() is True

        new = await registry.connection_for()
        assert new is not old
        assert not old.connected
        assert new.keyspace == "app_development"

    @pytest.mark.asyncio
    async def test_reconnect_named_keyspace(self, registry):
        registry.register(["app", "audit"])
        default = await registry.connection_for()
        old_audit = await registry.connection_for("audit")

        await registry.reconnect("audit")

        assert await registry.connection_for() is default
        assert await registry.connection_for("audit") is not old_audit

    @pytest.mark.asyncio
    async def test_reconnect_without_default_returns_false(self, registry):
        assert await registry.reconnect() is False

    @pytest.mark.asyncio
    async def test_reconnect_checks_config_first(self, fake_cluster):
        config = ColumnStoreConfig.from_mapping({}, environment="development")
        registry = ConnectionRegistry(config, fake_cluster.connect)

        with pytest.raises(MissingConfigurationError):
            await registry.reconnect()

    @pytest.mark.asyncio
    async def test_reconnect_counts_metric(self, registry):
        registry.register("app")
        await registry.reconnect()
        assert registry.metrics.registry.get_sample_value(
            "columnstore_reconnects_total", {"keyspace": "app"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_reconnect_survives_close_failure(self, registry, fake_cluster):
        registry.register("app")
        old = await registry.connection_for()

        async def broken_disconnect():
            raise OSError("socket already gone")

        old.disconnect = broken_disconnect

        assert await registry.reconnect() is True
        assert (await registry.connection_for()) is not old
