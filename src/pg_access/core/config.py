# PgAccess - PostgreSQL Data Access Layer
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Database configuration using Pydantic Settings.

Values are read from ``DB_*`` environment variables. Durations are expressed
in milliseconds, matching the environment contract; ``*_seconds`` properties
convert them for asyncpg.
"""

from typing import Literal
from urllib.parse import quote

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection, pool and retry settings."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,
        validate_default=True,
        populate_by_name=True,
        extra="forbid",
    )

    # Connection
    host: str = Field(
        default="localhost",
        min_length=1,
        description="Database host",
    )
    port: int = Field(
        default=5432,
        ge=1,
        le=65535,
        description="Database port",
    )
    username: str = Field(
        default="postgres",
        min_length=1,
        description="Database username",
    )
    password: str = Field(
        default="password",
        min_length=1,
        description="Database password",
    )
    database: str = Field(
        default="postgis",
        min_length=1,
        description="Database name",
    )
    ssl: bool = Field(
        default=False,
        description="Require TLS for database connections",
    )

    # Pool
    pool_min: int = Field(
        default=2,
        ge=0,
        description="Minimum database pool size",
    )
    pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database pool size",
    )
    connection_timeout: int = Field(
        default=30000,
        ge=1000,
        description="Connect and acquire timeout in milliseconds",
    )
    idle_timeout: int = Field(
        default=30000,
        ge=1000,
        description="Idle connection lifetime in milliseconds",
    )

    # Startup probe
    retry_attempts: int = Field(
        default=6,
        ge=1,
        description="Connectivity probe attempts",
    )
    retry_delay: int = Field(
        default=10000,
        ge=1000,
        description="Delay between probe attempts in milliseconds",
    )
    retry_strategy: Literal["fixed", "exponential"] = Field(
        default="fixed",
        description="Delay strategy between probe attempts",
    )
    retry_max_delay: int = Field(
        default=60000,
        ge=1000,
        description="Upper bound for exponential probe delays in milliseconds",
    )
    check_connection: bool = Field(
        default=False,
        validation_alias="DB_CHECK",
        description="Probe the database at startup",
    )

    # Observability / shutdown
    slow_query_threshold: int = Field(
        default=1000,
        ge=1,
        description="Queries slower than this (milliseconds) are logged as warnings",
    )
    shutdown_timeout: int = Field(
        default=5000,
        ge=100,
        description="Pool close timeout in milliseconds",
    )

    @field_validator("pool_max")
    @classmethod
    def validate_pool_sizes(
        cls: type["DatabaseSettings"], v: int, info: ValidationInfo
    ) -> int:
        """Ensure pool max is greater than pool min."""
        if "pool_min" in info.data:
            min_size = info.data["pool_min"]
            if v < min_size:
                raise ValueError(f"pool_max ({v}) must be >= pool_min ({min_size})")
        return v

    @field_validator("retry_max_delay")
    @classmethod
    def validate_retry_max_delay(
        cls: type["DatabaseSettings"], v: int, info: ValidationInfo
    ) -> int:
        """Ensure the backoff cap is not below the base delay."""
        if "retry_delay" in info.data and v < info.data["retry_delay"]:
            raise ValueError(
                f"retry_max_delay ({v}) must be >= retry_delay ({info.data['retry_delay']})"
            )
        return v

    @property
    @beartype
    def dsn(self) -> str:
        """PostgreSQL connection URL with quoted credentials."""
        user = quote(self.username, safe="")
        password = quote(self.password, safe="")
        return f"postgresql://{user}:{password}@{self.host}:{self.port}/{self.database}"

    @property
    @beartype
    def safe_dsn(self) -> str:
        """Connection URL with the password masked, for logs."""
        user = quote(self.username, safe="")
        return f"postgresql://{user}:***@{self.host}:{self.port}/{self.database}"

    @property
    @beartype
    def connection_timeout_seconds(self) -> float:
        return self.connection_timeout / 1000

    @property
    @beartype
    def idle_timeout_seconds(self) -> float:
        return self.idle_timeout / 1000

    @property
    @beartype
    def retry_delay_seconds(self) -> float:
        return self.retry_delay / 1000

    @property
    @beartype
    def retry_max_delay_seconds(self) -> float:
        return self.retry_max_delay / 1000

    @property
    @beartype
    def shutdown_timeout_seconds(self) -> float:
        return self.shutdown_timeout / 1000


_settings: DatabaseSettings | None = None


@beartype
def get_settings() -> DatabaseSettings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = DatabaseSettings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
