"""
Keyspace registry: which keyspaces are known, which one is the default,
and the one live driver per keyspace.
"""

import logging
from typing import Awaitable, Callable, Optional

from vertector_columnstore.config import ColumnStoreConfig, ConnectionConfig
from vertector_columnstore.driver import StoreDriver, validate_identifier
from vertector_columnstore.errors import InvalidKeyspaceError, MissingConfigurationError, StoreValidationError
from vertector_columnstore.observability import StoreMetrics

logger = logging.getLogger(__name__)

# Builds a driver for a physical keyspace from one environment section
DriverFactory = Callable[[str, ConnectionConfig], Awaitable[StoreDriver]]


class ConnectionRegistry:
    """
    Maps logical keyspace names to lazily built drivers.

    Connections are created on first use and stay cached until the keyspace
    is disconnected or reconnected. The physical keyspace a driver binds to
    is the logical name suffixed with the active environment, so the same
    code can run against ``accounts_development`` and ``accounts_production``.

    Example:
        registry = ConnectionRegistry(config, CqlStoreDriver.connect)
        registry.register(["accounts", "audit"])   # "accounts" becomes default
        driver = await registry.connection_for()   # accounts_development
    """

    def __init__(
        self,
        config: ColumnStoreConfig,
        driver_factory: DriverFactory,
        metrics: StoreMetrics | None = None,
    ):
        self.config = config
        self.driver_factory = driver_factory
        self.metrics = metrics
        self._keyspaces: dict[str, Optional[StoreDriver]] = {}
        self._default: str | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, names: str | list[str] | tuple[str, ...]) -> list[str]:
        """
        Make keyspaces known to the registry.

        Names already registered are left alone. When no default is set yet,
        the first newly added name becomes the default.

        Returns:
            The names that were newly added

        Raises:
            InvalidKeyspaceError: If ``names`` is not a string or a list/tuple
                of strings, or a name is not a valid identifier
        """
        if isinstance(names, str):
            candidates = [names]
        elif isinstance(names, (list, tuple)):
            candidates = list(names)
        else:
            raise InvalidKeyspaceError(
                f"Keyspaces must be a string or a list of strings, got {type(names).__name__}",
                keyspace=names
            )

        for name in candidates:
            self._check_name(name)

        added = []
        for name in candidates:
            if name not in self._keyspaces:
                self._keyspaces[name] = None
                added.append(name)

        if added and self._default is None:
            self._default = added[0]
            logger.info(f"Default keyspace set to '{self._default}'")

        if added:
            logger.debug(f"Registered keyspaces: {', '.join(added)}")
        return added

    def set_default(self, name: str) -> None:
        """
        Raises:
            InvalidKeyspaceError: If ``name`` was never registered
        """
        if name not in self._keyspaces:
            raise InvalidKeyspaceError(f"Keyspace '{name}' is not registered", keyspace=name)
        self._default = name
        logger.info(f"Default keyspace set to '{name}'")

    @property
    def default_keyspace(self) -> str | None:
        return self._default

    @default_keyspace.setter
    def default_keyspace(self, name: str) -> None:
        self.set_default(name)

    @property
    def keyspaces(self) -> dict[str, bool]:
        """Registered keyspaces mapped to whether a connection is currently open."""
        return {name: driver is not None for name, driver in self._keyspaces.items()}

    def physical_name(self, name: str) -> str:
        """Keyspace name on the server: the logical name suffixed with the environment."""
        return f"{name}_{self.config.environment}"

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def connection_for(self, name: str | None = None) -> StoreDriver:
        """
        Driver for ``name`` (default keyspace when omitted), connecting on first use.

        Raises:
            InvalidKeyspaceError: No name and no default, or ``name`` not registered
            MissingConfigurationError: The active environment has no config section
            StoreTransportError: The store could not be reached
        """
        name = self._resolve(name)
        driver = self._keyspaces[name]
        if driver is None:
            driver = await self._connect(name)
            self._keyspaces[name] = driver
        return driver

    async def disconnect(self, name: str) -> bool:
        """
        Close the connection to a non-default keyspace and forget the keyspace.

        Disconnecting a keyspace that is unknown or already gone is a no-op.

        Raises:
            InvalidKeyspaceError: If ``name`` is the default keyspace
        """
        if name == self._default:
            raise InvalidKeyspaceError(f"Cannot disconnect the default keyspace '{name}'", keyspace=name)

        driver = self._keyspaces.pop(name, None)
        if driver is not None:
            await driver.disconnect()
            logger.info(f"Disconnected keyspace '{name}'")
        return True

    async def disconnect_all(self) -> None:
        """Disconnect every keyspace except the default."""
        for name in list(self._keyspaces):
            if name != self._default:
                await self.disconnect(name)

    async def reconnect(self, name: str | None = None) -> bool:
        """
        Replace the connection for ``name`` (default keyspace when omitted).

        The old driver is closed after the new one is in place; a failure to
        close it is logged and otherwise ignored.

        Returns:
            False when no name is given and no default is set, True otherwise

        Raises:
            MissingConfigurationError: The active environment has no config section
            InvalidKeyspaceError: If ``name`` is not registered
        """
        section = self._section()
        name = name or self._default
        if name is None:
            return False
        if name not in self._keyspaces:
            raise InvalidKeyspaceError(f"Keyspace '{name}' is not registered", keyspace=name)

        old_driver = self._keyspaces[name]
        self._keyspaces[name] = await self.driver_factory(self.physical_name(name), section)
        logger.warning(f"Reconnected keyspace '{name}'", extra={"keyspace": name})
        if self.metrics:
            self.metrics.record_reconnect(name)

        if old_driver is not None:
            try:
                await old_driver.disconnect()
            except Exception as e:
                logger.warning(f"Failed to close stale connection for '{name}': {e}")
        return True

    async def close(self) -> None:
        """Disconnect everything, the default keyspace included. Registrations are kept."""
        for name, driver in list(self._keyspaces.items()):
            if driver is None:
                continue
            self._keyspaces[name] = None
            try:
                await driver.disconnect()
            except Exception as e:
                logger.warning(f"Failed to close connection for '{name}': {e}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, name: str | None) -> str:
        if name is None:
            if self._default is None:
                raise InvalidKeyspaceError("No keyspace given and no default keyspace is set")
            return self._default
        if name not in self._keyspaces:
            raise InvalidKeyspaceError(f"Keyspace '{name}' is not registered", keyspace=name)
        return name

    def _section(self) -> ConnectionConfig:
        section = self.config.section()
        if section is None:
            raise MissingConfigurationError(self.config.environment)
        return section

    async def _connect(self, name: str) -> StoreDriver:
        section = self._section()
        physical = self.physical_name(name)
        logger.info(f"Connecting keyspace '{name}' as '{physical}'")
        return await self.driver_factory(physical, section)

    @staticmethod
    def _check_name(name: object) -> None:
        if not isinstance(name, str):
            raise InvalidKeyspaceError(f"Keyspace names must be strings, got {type(name).__name__}", keyspace=name)
        try:
            validate_identifier(name, "keyspace")
        except StoreValidationError as e:
            raise InvalidKeyspaceError(f"Invalid keyspace name '{name}'", keyspace=name) from e
