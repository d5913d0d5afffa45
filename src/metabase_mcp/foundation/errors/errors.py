"""Standardized error handling for Metabase tools.

Provides error codes, structured error responses for agent feedback, and the
exception taxonomy raised by the retrieval engine:

- RequestValidationError: malformed request, rejected before any fetch
- UpstreamError: a single Metabase call failed (contained per id)
- AggregateFailure: every id in a batch failed
"""

from __future__ import annotations

import traceback
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Self

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ErrorCode(StrEnum):
    """Standard error codes for tool failures.

    Used for programmatic error handling and retry decisions.
    """
    API_KEY_INVALID = "API_KEY_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_PARAMS = "INVALID_PARAMS"
    PARSE_ERROR = "PARSE_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"


# Flattened pattern -> code mapping for O(1) dict lookup after pattern extraction
_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "connection": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "rate": ErrorCode.RATE_LIMITED,
    "auth": ErrorCode.API_KEY_INVALID,
    "permission": ErrorCode.PERMISSION_DENIED,
    "forbidden": ErrorCode.PERMISSION_DENIED,
    "parse": ErrorCode.PARSE_ERROR,
    "json": ErrorCode.PARSE_ERROR,
    "decode": ErrorCode.PARSE_ERROR,
    "validation": ErrorCode.INVALID_PARAMS,
    "notfound": ErrorCode.NOT_FOUND,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES.keys())  # Ordered for priority


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    """Cached classification by exception signature."""
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.EXTERNAL_SERVICE_ERROR


def classify_exception(exc: Exception) -> ErrorCode:
    """Map exception to error code. Known errors carry their own code; others are pattern-matched."""
    if isinstance(exc, MetabaseError):
        return exc.code
    return _classify_cached(f"{type(exc).__name__} {exc}")


# Pre-computed retryable codes set for O(1) lookup
_RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.EXTERNAL_SERVICE_ERROR,
})


class ToolError(BaseModel):
    """Structured error response for tool failures.

    Attributes:
        tool_name: Name of the tool that failed
        message: Human-readable error message
        code: Machine-readable error code for programmatic handling
        recoverable: Whether the error might succeed on retry
        details: Optional detailed information (e.g., per-id failures)
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Tool Error",
            "description": "Structured error from tool execution",
            "examples": [{
                "tool_name": "retrieve",
                "message": "card not found: IDs 4, 5",
                "code": "NOT_FOUND",
                "recoverable": False,
            }],
        },
    )

    tool_name: Annotated[str, Field(min_length=1)]
    message: Annotated[str, Field(min_length=1)]
    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = True
    details: str | None = None

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | Exception) -> str:
        """Accept Exception objects and extract message."""
        return str(v) if isinstance(v, Exception) else v

    @computed_field
    @property
    def is_retryable(self) -> bool:
        """Whether this error is typically retryable (rate limits, timeouts, network)."""
        return self.code in _RETRYABLE_CODES

    @classmethod
    def create(
        cls,
        tool_name: str,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool = True,
        details: str | None = None,
    ) -> Self:
        """Factory method for construction."""
        return cls(tool_name=tool_name, message=message, code=code, recoverable=recoverable, details=details)

    @classmethod
    def from_exception(
        cls,
        tool_name: str,
        exc: Exception,
        context: str = "",
        *,
        include_trace: bool = False,
    ) -> Self:
        """Create from exception with auto-classification."""
        if isinstance(exc, MetabaseError):
            return exc.to_tool_error(tool_name)
        return cls(
            tool_name=tool_name,
            message=f"{context}: {exc}" if context else str(exc),
            code=classify_exception(exc),
            recoverable=True,
            details=traceback.format_exc() if include_trace else None,
        )

    def render(self) -> str:
        """Format error for LLM consumption."""
        parts = [f"**Tool Error ({self.tool_name}):** {self.message}"]
        if self.recoverable:
            parts.append("\n_This error may be recoverable - consider retrying or trying an alternative approach._")
        if self.details:
            parts.append(f"\n\nDetails:\n```\n{self.details}\n```")
        return "".join(parts)

    __str__ = render


class ItemError(BaseModel):
    """Failure reason for one requested id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: int
    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = True
    http_status: int | None = None

    @classmethod
    def from_exception(cls, item_id: int, exc: Exception) -> ItemError:
        """Build from the exception a failed load raised."""
        if isinstance(exc, MetabaseError):
            return cls(
                id=item_id,
                message=exc.message,
                code=exc.code,
                recoverable=exc.recoverable,
                http_status=getattr(exc, "http_status", None),
            )
        code = classify_exception(exc)
        return cls(id=item_id, message=str(exc) or type(exc).__name__, code=code,
                   recoverable=code in _RETRYABLE_CODES)


# ═══════════════════════════════════════════════════════════════════════════════
# Exception Taxonomy
# ═══════════════════════════════════════════════════════════════════════════════


class MetabaseError(Exception):
    """Base for errors raised by the retrieval engine and Metabase client."""

    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = True

    def __init__(self, message: str, *, code: ErrorCode | None = None, recoverable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

    def details(self) -> str | None:
        return None

    def to_tool_error(self, tool_name: str) -> ToolError:
        return ToolError.create(tool_name, self.message, self.code,
                                recoverable=self.recoverable, details=self.details())


class RequestValidationError(MetabaseError):
    """Malformed request: rejected before any upstream call, never retried."""

    code = ErrorCode.INVALID_PARAMS
    recoverable = False

    def __init__(self, parameter: str, value: object, expected: str) -> None:
        super().__init__(f"Invalid parameter '{parameter}' ({value!r}). {expected}")
        self.parameter = parameter
        self.value = value
        self.expected = expected


class UpstreamError(MetabaseError):
    """A single Metabase API call failed (transport or HTTP status)."""

    code = ErrorCode.EXTERNAL_SERVICE_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        http_status: int | None = None,
        recoverable: bool | None = None,
    ) -> None:
        resolved = code or ErrorCode.EXTERNAL_SERVICE_ERROR
        super().__init__(message, code=resolved,
                         recoverable=recoverable if recoverable is not None else resolved in _RETRYABLE_CODES)
        self.http_status = http_status


class AggregateFailure(MetabaseError):
    """Every id in a batch failed; surfaced as one error instead of an empty result."""

    def __init__(self, resource_type: str, errors: list[ItemError], message: str, code: ErrorCode) -> None:
        super().__init__(message, code=code, recoverable=any(e.recoverable for e in errors))
        self.resource_type = resource_type
        self.errors = errors

    def details(self) -> str | None:
        return "\n".join(f"{e.id}: [{e.code}] {e.message}" for e in self.errors) or None
