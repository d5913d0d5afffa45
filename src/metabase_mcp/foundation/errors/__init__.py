"""Unified error handling for metabase_mcp.

- ErrorCode: Standard error codes for tool failures
- ToolError: Structured error rendered back to the agent
- MetabaseError and subclasses: the engine's exception taxonomy
- Result/Ok/Err: per-item success or failure
"""

from .errors import (
    AggregateFailure,
    ErrorCode,
    ItemError,
    MetabaseError,
    RequestValidationError,
    ToolError,
    UpstreamError,
    classify_exception,
)
from .result import Err, Ok, Result
from .types import JsonDict, JsonValue

__all__ = [
    # Core errors
    "ErrorCode", "ToolError", "ItemError", "classify_exception",
    # Taxonomy
    "MetabaseError", "RequestValidationError", "UpstreamError", "AggregateFailure",
    # Result
    "Result", "Ok", "Err",
    # JSON aliases
    "JsonDict", "JsonValue",
]
