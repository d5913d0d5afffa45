"""Configuration management using pydantic-settings.

Provides environment-based configuration with type safety and validation.
"""

from .settings import (
    BatchSettings,
    CacheSettings,
    LoggingSettings,
    MetabaseSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "BatchSettings",
    "CacheSettings",
    "LoggingSettings",
    "MetabaseSettings",
    "clear_settings_cache",
    "get_settings",
]
