"""
Configuration management for the column store.

This module provides:
- Pydantic-based configuration validation
- Per-environment connection sections (development, test, production, ...)
- TLS/SSL and authentication settings
- Loading from environment variables and ``.env`` files
"""

import os
import logging
from typing import Any, Mapping, Optional, Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator, ConfigDict

logger = logging.getLogger(__name__)

# Environment variable selecting the active configuration section
ENVIRONMENT_VARIABLE = "COLUMNSTORE_ENV"
DEFAULT_ENVIRONMENT = "development"

# Default timeout (seconds) for establishing a connection to the store
DEFAULT_CONNECT_TIMEOUT = 10.0


def current_environment() -> str:
    """Name of the deployment environment, used for config lookup and keyspace suffixes."""
    return os.getenv(ENVIRONMENT_VARIABLE) or DEFAULT_ENVIRONMENT


# ============================================================================
# Configuration Models
# ============================================================================

class TLSConfig(BaseModel):
    """TLS/SSL configuration for secure connections."""

    enabled: bool = Field(
        default=False,
        description="Enable TLS/SSL encryption"
    )

    cert_file: Optional[str] = Field(
        default=None,
        description="Path to client certificate file"
    )

    key_file: Optional[str] = Field(
        default=None,
        description="Path to client private key file"
    )

    ca_cert_file: Optional[str] = Field(
        default=None,
        description="Path to CA certificate file for server verification"
    )

    verify_mode: Literal["CERT_NONE", "CERT_OPTIONAL", "CERT_REQUIRED"] = Field(
        default="CERT_REQUIRED",
        description="Certificate verification mode"
    )

    @field_validator('cert_file', 'key_file', 'ca_cert_file')
    @classmethod
    def validate_file_exists(cls, v):
        """Validate that certificate files exist."""
        if v is not None and not os.path.exists(v):
            raise ValueError(f"Certificate file not found: {v}")
        return v

    @model_validator(mode='after')
    def validate_tls_config(self):
        """Validate TLS configuration consistency."""
        if self.enabled:
            if self.verify_mode == "CERT_REQUIRED" and not self.ca_cert_file:
                raise ValueError(
                    "TLS verification requires 'ca_cert_file' when verify_mode is CERT_REQUIRED"
                )
            if self.cert_file and not self.key_file:
                raise ValueError("Client certificate requires private key file")
        return self


class AuthConfig(BaseModel):
    """Plain-text authentication for the store."""

    enabled: bool = Field(
        default=False,
        description="Enable authentication"
    )

    username: Optional[str] = Field(
        default=None,
        description="Database username"
    )

    password: Optional[str] = Field(
        default=None,
        description="Database password"
    )

    password_env: Optional[str] = Field(
        default=None,
        description="Name of an environment variable holding the password"
    )

    @model_validator(mode='after')
    def validate_auth_config(self):
        """Validate authentication configuration."""
        if self.enabled:
            if not self.username:
                raise ValueError("Authentication requires username")
            if not self.password and not self.password_env:
                raise ValueError(
                    "Authentication requires either 'password' or 'password_env'"
                )
        return self

    def resolve_password(self) -> Optional[str]:
        """Return the password, reading it from the environment when configured that way."""
        if self.password:
            return self.password
        if self.password_env:
            value = os.getenv(self.password_env)
            if value is None:
                raise ValueError(f"Secret '{self.password_env}' not found in environment variables")
            return value
        return None


class ConnectionConfig(BaseModel):
    """
    Connection settings for one environment.

    ``server`` is accepted as an alias of ``servers`` and may be a single
    host string or a comma separated list.
    """

    servers: list[str] = Field(
        validation_alias=AliasChoices("servers", "server"),
        description="Store hosts (hostnames or IPs); the only nodes ever contacted"
    )

    port: int = Field(
        default=9042,
        ge=1,
        le=65535,
        description="Native transport port"
    )

    connect_timeout: float = Field(
        default=DEFAULT_CONNECT_TIMEOUT,
        gt=0.0,
        le=120.0,
        description="Seconds allowed to establish a connection"
    )

    request_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Client-side timeout for a single request"
    )

    protocol_version: Optional[int] = Field(
        default=None,
        ge=3,
        le=5,
        description="CQL native protocol version (negotiated when unset)"
    )

    compression: bool = Field(
        default=True,
        description="Use frame compression when a codec (lz4/snappy) is installed"
    )

    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Authentication configuration"
    )

    tls: TLSConfig = Field(
        default_factory=TLSConfig,
        description="TLS/SSL configuration"
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('servers', mode='before')
    @classmethod
    def split_servers(cls, v):
        """Accept ``"a,b"`` and ``"a"`` as well as lists."""
        if isinstance(v, str):
            v = v.split(",")
        return [s.strip() for s in v if s and s.strip()]

    @field_validator('servers')
    @classmethod
    def validate_servers(cls, v):
        if not v:
            raise ValueError("At least one server required")
        return v


class ColumnStoreConfig(BaseModel):
    """
    Complete configuration: one connection section per environment.

    Example usage:
        config = ColumnStoreConfig(
            environments={
                "development": ConnectionConfig(servers=["127.0.0.1"]),
                "production": ConnectionConfig(
                    servers=["scylla1.example.com", "scylla2.example.com"],
                    auth=AuthConfig(enabled=True, username="app", password_env="SCYLLA_PASSWORD"),
                ),
            }
        )
    """

    environment: str = Field(
        default_factory=current_environment,
        description="Active environment; selects the section and suffixes keyspace names"
    )

    environments: dict[str, ConnectionConfig] = Field(
        default_factory=dict,
        description="Connection section per environment name"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if not v or not v.replace('_', '').isalnum():
            raise ValueError("Environment must be alphanumeric with optional underscores")
        return v

    def section(self, environment: str | None = None) -> Optional[ConnectionConfig]:
        """Connection section for ``environment`` (default: the active one), or None."""
        return self.environments.get(environment or self.environment)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], environment: str | None = None) -> "ColumnStoreConfig":
        """
        Build from a ``{environment: {"server": ..., ...}}`` table.

        Args:
            mapping: Environment name to connection settings
            environment: Active environment (defaults to ``COLUMNSTORE_ENV``)
        """
        data: dict[str, Any] = {"environments": dict(mapping)}
        if environment:
            data["environment"] = environment
        return cls.model_validate(data)


def load_config_from_env(dotenv_path: str | None = None) -> ColumnStoreConfig:
    """
    Load a single-environment configuration from environment variables.

    Values from a ``.env`` file are loaded first without overriding the
    process environment.

    Environment variables:
        COLUMNSTORE_ENV: Environment name (default: development)
        COLUMNSTORE_SERVERS: Comma-separated list of hosts (default: 127.0.0.1)
        COLUMNSTORE_PORT: Port (default: 9042)
        COLUMNSTORE_CONNECT_TIMEOUT: Connect timeout in seconds (default: 10)
        COLUMNSTORE_REQUEST_TIMEOUT: Request timeout in seconds (default: 10)
        COLUMNSTORE_AUTH_ENABLED: Enable authentication (true/false)
        COLUMNSTORE_USERNAME: Database username
        COLUMNSTORE_PASSWORD_ENV: Name of the variable holding the password
        COLUMNSTORE_TLS_ENABLED: Enable TLS (true/false)
        COLUMNSTORE_TLS_CA_CERT: Path to CA certificate

    Returns:
        Validated configuration
    """
    load_dotenv(dotenv_path)

    environment = current_environment()
    section = ConnectionConfig(
        servers=os.getenv("COLUMNSTORE_SERVERS", "127.0.0.1"),
        port=int(os.getenv("COLUMNSTORE_PORT", "9042")),
        connect_timeout=float(os.getenv("COLUMNSTORE_CONNECT_TIMEOUT", str(DEFAULT_CONNECT_TIMEOUT))),
        request_timeout=float(os.getenv("COLUMNSTORE_REQUEST_TIMEOUT", "10")),
        auth=AuthConfig(
            enabled=os.getenv("COLUMNSTORE_AUTH_ENABLED", "false").lower() == "true",
            username=os.getenv("COLUMNSTORE_USERNAME"),
            password_env=os.getenv("COLUMNSTORE_PASSWORD_ENV"),
        ),
        tls=TLSConfig(
            enabled=os.getenv("COLUMNSTORE_TLS_ENABLED", "false").lower() == "true",
            ca_cert_file=os.getenv("COLUMNSTORE_TLS_CA_CERT"),
        ),
    )

    logger.info(f"Loaded column store config for environment '{environment}'")
    return ColumnStoreConfig(environment=environment, environments={environment: section})
