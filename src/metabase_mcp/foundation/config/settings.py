"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from metabase_mcp.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.cache.ttl_ms
    600000
    >>> settings.batch.max_ids
    50

    # Or with environment variables:
    # METABASE_URL=https://metabase.example.com
    # METABASE_API_KEY=mb_xxx
    # METABASE_CACHE_TTL_MS=120000
    # METABASE_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import (
    Field,
    HttpUrl,
    PositiveInt,
    SecretStr,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Per-resource cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="METABASE_CACHE_",
        extra="ignore",
    )

    ttl_ms: PositiveInt = Field(default=600_000, description="Entry time-to-live in milliseconds")
    single_flight: bool = Field(
        default=False,
        description="Share one in-flight upstream load among concurrent requests for the same id",
    )


class BatchSettings(BaseSettings):
    """Batch retrieval limits and concurrency tiers."""

    model_config = SettingsConfigDict(
        env_prefix="METABASE_BATCH_",
        extra="ignore",
    )

    max_ids: Annotated[int, Field(ge=1, le=500)] = 50
    max_database_ids: Annotated[int, Field(ge=1, le=500)] = 2
    small_threshold: PositiveInt = 3
    medium_threshold: PositiveInt = 20
    medium_chunk_size: PositiveInt = 8
    large_chunk_size: PositiveInt = 5

    @model_validator(mode="after")
    def _check_tiers(self) -> BatchSettings:
        if self.small_threshold >= self.medium_threshold:
            raise ValueError("small_threshold must be below medium_threshold")
        if self.max_database_ids > self.max_ids:
            raise ValueError("max_database_ids cannot exceed max_ids")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="METABASE_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        """Accept lowercase and the 'warn' alias."""
        if not isinstance(v, str):
            return v
        v = v.upper()
        return "WARNING" if v == "WARN" else v


class MetabaseSettings(BaseSettings):
    """Root settings for the Metabase tool server.

    Loads configuration from environment variables with METABASE_ prefix.
    Supports nested configuration and .env files.

    Example environment variables:
        METABASE_URL=https://metabase.example.com
        METABASE_API_KEY=mb_xxx
        METABASE_REQUEST_TIMEOUT_MS=30000
        METABASE_CACHE_TTL_MS=600000
        METABASE_BATCH_MAX_IDS=50
    """

    model_config = SettingsConfigDict(
        env_prefix="METABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    url: HttpUrl = Field(..., description="Metabase base URL")
    api_key: SecretStr | None = Field(default=None, description="Metabase API key (sent as X-API-KEY)")
    request_timeout_ms: PositiveInt = Field(default=600_000, description="Upstream request timeout")
    tool_timeout: Annotated[float, Field(gt=0.0, le=3600.0)] = Field(
        default=900.0, description="Wall-clock limit for a single tool call, in seconds",
    )

    # Nested settings (loaded with METABASE_CACHE_, METABASE_BATCH_, METABASE_LOG_)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @computed_field
    @property
    def base_url(self) -> str:
        """Base URL without trailing slash, for joining API paths."""
        return str(self.url).rstrip("/")

    @computed_field
    @property
    def request_timeout(self) -> float:
        """Upstream timeout in seconds (httpx units)."""
        return self.request_timeout_ms / 1000


# Singleton pattern for settings
@lru_cache(maxsize=1)
def get_settings() -> MetabaseSettings:
    """Get the global settings instance (cached)."""
    return MetabaseSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
