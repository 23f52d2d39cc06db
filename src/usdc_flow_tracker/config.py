"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
USDC Flow Tracker, loading and validating environment variables at
startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

ALCHEMY_POLYGON_URL_TEMPLATE = "https://polygon-mainnet.g.alchemy.com/v2/{api_key}"
ALCHEMY_SOLANA_URL_TEMPLATE = "https://solana-mainnet.g.alchemy.com/v2/{api_key}"


class ConfigurationError(ValueError):
    """Raised when a required endpoint or credential is missing at startup."""


def _validate_http_url(v: str | None) -> str | None:
    if v is None:
        return v
    if not v.startswith(("http://", "https://")):
        raise ValueError("RPC URL must be an HTTP(S) endpoint")
    return v.rstrip("/")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./usdc_flow_tracker.db",
        alias="DATABASE_URL",
        description="PostgreSQL or SQLite connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional dashboard cache mirror)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; unset keeps the dashboard cache in-process only",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PolygonSettings(BaseSettings):
    """Polygon asset-transfer API settings."""

    model_config = SettingsConfigDict(env_prefix="POLYGON_", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="POLYGON_RPC_URL",
        description="Polygon JSON-RPC endpoint supporting alchemy_getAssetTransfers",
    )
    alchemy_api_key: SecretStr | None = Field(
        default=None,
        alias="ALCHEMY_POLYGON_API_KEY",
        description="Alchemy key used to build the endpoint when POLYGON_RPC_URL is unset",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="POLYGON_FALLBACK_RPC_URL",
        description="Fallback Polygon RPC endpoint",
    )
    usdc_contract_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(
            "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",  # bridged USDC
            "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",  # native USDC
        ),
        alias="POLYGON_USDC_CONTRACT_ADDRESSES",
        description="USDC contract addresses to watch (comma-separated)",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)

    @field_validator("usdc_contract_addresses", mode="before")
    @classmethod
    def _parse_usdc_addresses(cls, v: object) -> tuple[str, ...]:
        if v is None:
            raise ValueError("POLYGON_USDC_CONTRACT_ADDRESSES must be set")
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return tuple(parts)
        if isinstance(v, (list, tuple)):
            return tuple(str(x) for x in v)
        raise TypeError("Invalid POLYGON_USDC_CONTRACT_ADDRESSES type")

    @property
    def endpoint(self) -> str | None:
        """Resolved primary endpoint, or None when nothing is configured."""
        if self.rpc_url:
            return self.rpc_url
        if self.alchemy_api_key:
            return ALCHEMY_POLYGON_URL_TEMPLATE.format(
                api_key=self.alchemy_api_key.get_secret_value()
            )
        return None


class SolanaSettings(BaseSettings):
    """Solana JSON-RPC settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str | None = Field(
        default=None,
        alias="SOLANA_RPC_URL",
        description="Solana JSON-RPC endpoint",
    )
    alchemy_api_key: SecretStr | None = Field(
        default=None,
        alias="ALCHEMY_SOLANA_API_KEY",
        description="Alchemy key used to build the endpoint when SOLANA_RPC_URL is unset",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        return _validate_http_url(v)

    @property
    def endpoint(self) -> str | None:
        """Resolved endpoint, or None when nothing is configured."""
        if self.rpc_url:
            return self.rpc_url
        if self.alchemy_api_key:
            return ALCHEMY_SOLANA_URL_TEMPLATE.format(
                api_key=self.alchemy_api_key.get_secret_value()
            )
        return None


class TronSettings(BaseSettings):
    """TronGrid TRC20 settings."""

    model_config = SettingsConfigDict(env_prefix="TRON_", extra="ignore")

    enabled: bool = Field(
        default=False,
        alias="TRON_ENABLED",
        description="Poll TRC20 transfers for wallets registered on tron",
    )
    api_url: str = Field(
        default="https://api.trongrid.io",
        alias="TRON_API_URL",
        description="TronGrid REST API base URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="TRON_API_KEY",
        description="Optional TronGrid API key (TRON-PRO-API-KEY header)",
    )
    token_contract_address: str = Field(
        default="TXYZopYRdj2D9XRtbG411XZZ3kM5VkAeBf",
        alias="TRON_TOKEN_CONTRACT_ADDRESS",
        description="TRC20 stablecoin contract to watch",
    )

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("TRON_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class DetectionSettings(BaseSettings):
    """Detection cycle, fallback and dashboard cache settings."""

    model_config = SettingsConfigDict(env_prefix="DETECTION_", extra="ignore")

    interval_minutes: float = Field(
        default=5.0,
        alias="DETECTION_INTERVAL_MINUTES",
        gt=0,
        le=24 * 60,
        description="Minutes between full detection cycles",
    )
    auto_start: bool = Field(
        default=True,
        alias="DETECTION_AUTO_START",
        description="Start the recurring cycle when the process starts",
    )
    max_failures: int = Field(
        default=3,
        alias="DETECTION_MAX_FAILURES",
        ge=1,
        le=100,
        description="Consecutive fetch failures before the fallback result is used",
    )
    failure_recovery_seconds: float = Field(
        default=600.0,
        alias="DETECTION_FAILURE_RECOVERY_SECONDS",
        ge=0,
        description="Seconds after the last failure before one probe fetch is allowed",
    )
    max_transfers: int = Field(
        default=100,
        alias="DETECTION_MAX_TRANSFERS",
        ge=1,
        le=1000,
        description="Upper bound on transfers requested per wallet per poll",
    )
    dashboard_cache_ttl_seconds: int = Field(
        default=300,
        alias="DETECTION_DASHBOARD_CACHE_TTL_SECONDS",
        ge=1,
        le=24 * 3600,
        description="Validity window of cached dashboard snapshots",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        alias="DETECTION_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=300,
        description="Timeout for a single chain API request",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files.

    Example:
        ```python
        from usdc_flow_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.detection.interval_minutes)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    polygon: PolygonSettings = Field(
        default_factory=lambda: PolygonSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    tron: TronSettings = Field(
        default_factory=lambda: TronSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    detection: DetectionSettings = Field(
        default_factory=lambda: DetectionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "polygon": {
                "rpc_url": self.polygon.rpc_url or "(not set)",
                "alchemy_api_key": "(set)" if self.polygon.alchemy_api_key else "(not set)",
                "fallback_rpc_url": self.polygon.fallback_rpc_url or "(not set)",
                "usdc_contract_addresses": ",".join(self.polygon.usdc_contract_addresses),
            },
            "solana": {
                "rpc_url": self.solana.rpc_url or "(not set)",
                "alchemy_api_key": "(set)" if self.solana.alchemy_api_key else "(not set)",
            },
            "tron": {
                "enabled": str(self.tron.enabled),
                "api_url": self.tron.api_url,
                "api_key": "(set)" if self.tron.api_key else "(not set)",
            },
            "detection": {
                "interval_minutes": str(self.detection.interval_minutes),
                "max_failures": str(self.detection.max_failures),
                "max_transfers": str(self.detection.max_transfers),
                "dashboard_cache_ttl_seconds": str(self.detection.dashboard_cache_ttl_seconds),
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self) -> tuple[str, str]:
        """Validate that every chain feed the engine polls has an endpoint.

        The scheduler must refuse to start when a required endpoint or
        credential is missing.

        Returns:
            The resolved (polygon, solana) endpoints.

        Raises:
            ConfigurationError: If a required setting is absent.
        """
        polygon_endpoint = self.polygon.endpoint
        solana_endpoint = self.solana.endpoint
        if polygon_endpoint is None:
            raise ConfigurationError("POLYGON_RPC_URL or ALCHEMY_POLYGON_API_KEY is required")
        if solana_endpoint is None:
            raise ConfigurationError("SOLANA_RPC_URL or ALCHEMY_SOLANA_API_KEY is required")
        if not self.polygon.usdc_contract_addresses:
            raise ConfigurationError("POLYGON_USDC_CONTRACT_ADDRESSES must not be empty")
        if self.tron.enabled and not self.tron.token_contract_address:
            raise ConfigurationError("TRON_TOKEN_CONTRACT_ADDRESS is required when TRON_ENABLED")
        return polygon_endpoint, solana_endpoint

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
