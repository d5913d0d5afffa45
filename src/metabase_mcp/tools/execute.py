"""execute_card / execute_query: run a saved card or native SQL, capped at row_limit rows.

Execution results are never cached. The SQL text is sent exactly as given;
row_limit only truncates what Metabase returns.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from metabase_mcp.foundation.errors import JsonDict
from metabase_mcp.runtime.observability import get_logger, log_context

from .base import BaseTool, ToolMetadata, dumps, new_request_id

if TYPE_CHECKING:
    from metabase_mcp.io.metabase import MetabaseClient

log = get_logger("metabase_mcp.tools.execute")

DEFAULT_ROW_LIMIT = 500
MAX_ROW_LIMIT = 2000

PositiveId = Annotated[StrictInt, Field(ge=1)]
RowLimit = Annotated[StrictInt, Field(ge=1, le=MAX_ROW_LIMIT, description="Rows to return (1-2000)")]


def rows_from(body: Any) -> list[JsonDict]:
    """Rows as column-name -> value objects, whichever shape Metabase answered with."""
    if isinstance(body, list):
        return [r for r in body if isinstance(r, dict)]
    if not isinstance(body, dict):
        return []
    numbered = sorted((k for k in body if k.isdigit()), key=int)
    if numbered:
        return [body[k] for k in numbered]
    data = body.get("data")
    if isinstance(data, dict):
        names = [c.get("name") for c in data.get("cols") or []]
        return [dict(zip(names, row)) for row in data.get("rows") or []]
    return []


# ═══════════════════════════════════════════════════════════════════════════════
# execute_card
# ═══════════════════════════════════════════════════════════════════════════════


class ExecuteCardParams(BaseModel):
    """Parameters for running a saved card."""

    model_config = ConfigDict(json_schema_extra={"examples": [{"card_id": 12, "row_limit": 100}]})

    card_id: PositiveId = Field(..., description="Id of the saved card (question)")
    card_parameters: list[JsonDict] = Field(default_factory=list, description="Metabase card filter parameters")
    row_limit: RowLimit = DEFAULT_ROW_LIMIT


class ExecuteCardTool(BaseTool[ExecuteCardParams]):
    """Run a saved Metabase card and return at most row_limit rows."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="execute_card",
        description=(
            "Run a saved Metabase card (question) with optional filter parameters. "
            "Returns up to row_limit rows (default 500, max 2000)."
        ),
        category="execution",
    )
    params_schema: ClassVar[type[BaseModel]] = ExecuteCardParams

    __slots__ = ("_client",)

    def __init__(self, client: MetabaseClient) -> None:
        self._client = client

    async def _async_run(self, params: ExecuteCardParams) -> str:
        request_id = new_request_id()
        with log_context(request_id=request_id, card_id=params.card_id):
            body = await self._client.execute_card(params.card_id, params.card_parameters)
            rows = rows_from(body)
            kept = rows[:params.row_limit]
            if len(rows) > len(kept):
                log.debug("row limit applied", original=len(rows), kept=len(kept))
            log.info("card executed", rows=len(kept))
            return dumps({
                "success": True,
                "request_id": request_id,
                "card_id": params.card_id,
                "row_count": len(kept),
                "original_row_count": len(rows),
                "applied_limit": params.row_limit,
                "rows": kept,
            })


# ═══════════════════════════════════════════════════════════════════════════════
# execute_query
# ═══════════════════════════════════════════════════════════════════════════════


class ExecuteQueryParams(BaseModel):
    """Parameters for running native SQL."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={"examples": [{"database_id": 1, "query": "SELECT * FROM orders"}]},
    )

    database_id: PositiveId = Field(..., description="Database to run the query against")
    query: str = Field(..., min_length=1, description="Native SQL, sent unchanged")
    native_parameters: list[JsonDict] = Field(default_factory=list, description="Template-tag parameters")
    row_limit: RowLimit = DEFAULT_ROW_LIMIT


class ExecuteQueryTool(BaseTool[ExecuteQueryParams]):
    """Run native SQL against one database and return at most row_limit rows."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="execute_query",
        description=(
            "Run a native SQL query against a Metabase database. "
            "Returns up to row_limit rows (default 500, max 2000) as column-name objects."
        ),
        category="execution",
    )
    params_schema: ClassVar[type[BaseModel]] = ExecuteQueryParams

    __slots__ = ("_client",)

    def __init__(self, client: MetabaseClient) -> None:
        self._client = client

    async def _async_run(self, params: ExecuteQueryParams) -> str:
        request_id = new_request_id()
        with log_context(request_id=request_id, database_id=params.database_id):
            body = await self._client.execute_native(params.database_id, params.query, params.native_parameters)
            rows = rows_from(body)
            kept = rows[:params.row_limit]
            log.info("query executed", rows=len(kept), original=len(rows))
            return dumps({
                "success": True,
                "request_id": request_id,
                "query": params.query,
                "database_id": params.database_id,
                "row_count": len(kept),
                "original_row_count": len(rows),
                "applied_limit": params.row_limit,
                "rows": kept,
            })
