"""Foundation - configuration and error handling shared by every layer."""

from __future__ import annotations

from .config import MetabaseSettings, clear_settings_cache, get_settings
from .errors import (
    AggregateFailure,
    Err,
    ErrorCode,
    ItemError,
    MetabaseError,
    Ok,
    RequestValidationError,
    Result,
    ToolError,
    UpstreamError,
)

__all__ = [
    # Config
    "MetabaseSettings", "get_settings", "clear_settings_cache",
    # Errors
    "ErrorCode", "ToolError", "ItemError",
    "MetabaseError", "RequestValidationError", "UpstreamError", "AggregateFailure",
    "Result", "Ok", "Err",
]
