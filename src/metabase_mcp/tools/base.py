"""Core tool abstractions: BaseTool, ToolMetadata, and JSON output.

Tools are defined by subclassing BaseTool with a typed parameter schema and
an async ``_async_run``. Every failure is rendered as ToolError text, so the
transport never sees an exception.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, TypeVar

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from metabase_mcp.foundation.errors import ErrorCode, MetabaseError, ToolError
from metabase_mcp.runtime.observability import get_logger, log_context

log = get_logger("metabase_mcp.tools")

DEFAULT_TIMEOUT = 900.0


class ToolMetadata(BaseModel):
    """Metadata describing a tool to MCP clients.

    Attributes:
        name: Unique identifier (snake_case, e.g., "clear_cache")
        description: What the tool does (shown to LLM for selection)
        category: Grouping category (e.g., "retrieval", "admin")
        enabled: Whether tool is currently active
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=r"^[a-z][a-z0-9_]*$")
    description: str = Field(..., min_length=10)
    category: str = Field(default="general")
    enabled: bool = Field(default=True)


TParams = TypeVar("TParams", bound=BaseModel)


def dumps(payload: Any) -> str:
    """Pretty JSON text for tool output."""
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS, default=str).decode()


def new_request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class BaseTool(ABC, Generic[TParams]):
    """Abstract base class for all tools.

    Subclasses must:
    - Define `metadata` class variable with ToolMetadata
    - Define `params_schema` class variable with the Pydantic model type
    - Implement `_async_run(params)` returning a string result

    Example:
        >>> class PingTool(BaseTool[EmptyParams]):
        ...     metadata = ToolMetadata(name="ping", description="Check the server is alive")
        ...     params_schema = EmptyParams
        ...
        ...     async def _async_run(self, params: EmptyParams) -> str:
        ...         return "pong"
    """

    metadata: ClassVar[ToolMetadata]
    params_schema: ClassVar[type[BaseModel]]

    # ─────────────────────────────────────────────────────────────────
    # Error Handling
    # ─────────────────────────────────────────────────────────────────

    def _error(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN,
        *,
        recoverable: bool = True,
    ) -> str:
        """Create a standardized error response string."""
        return ToolError.create(self.metadata.name, message, code, recoverable=recoverable).render()

    def _error_from_exception(self, exc: Exception, context: str = "") -> str:
        """Create error response from caught exception."""
        return ToolError.from_exception(self.metadata.name, exc, context).render()

    # ─────────────────────────────────────────────────────────────────
    # Core Execution
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def _async_run(self, params: TParams) -> str:
        """Execute the tool. Raise MetabaseError subclasses for expected failures."""
        ...

    async def arun(self, params: TParams, timeout: float = DEFAULT_TIMEOUT) -> str:
        """Execute with timeout, rendering any failure as ToolError text."""
        name = self.metadata.name
        with log_context(tool=name):
            try:
                return await asyncio.wait_for(self._async_run(params), timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("tool timed out", timeout_s=timeout)
                return self._error(f"Operation timed out after {timeout}s", ErrorCode.TIMEOUT)
            except MetabaseError as e:
                log.warning("tool failed", code=e.code.value, error=e.message)
                return e.to_tool_error(name).render()
            except Exception as e:
                log.exception("tool crashed", error=str(e))
                return self._error_from_exception(e, "Execution failed")

    async def ainvoke(self, timeout: float = DEFAULT_TIMEOUT, **kwargs: object) -> str:
        """Validate keyword arguments against params_schema, then run."""
        try:
            params = self.params_schema(**kwargs)
        except ValidationError as e:
            return self._error(f"Invalid parameters: {e}", ErrorCode.INVALID_PARAMS, recoverable=False)
        return await self.arun(params, timeout)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.metadata.name!r}>"
