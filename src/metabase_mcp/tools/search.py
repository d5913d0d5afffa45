"""search_cards / search_dashboards: Metabase full-text search narrowed to one model."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from metabase_mcp.foundation.errors import JsonDict, RequestValidationError
from metabase_mcp.runtime.observability import get_logger, log_context

from .base import BaseTool, ToolMetadata, dumps, new_request_id

if TYPE_CHECKING:
    from metabase_mcp.io.metabase import MetabaseClient
    from metabase_mcp.io.metabase.client import QueryParams

log = get_logger("metabase_mcp.tools.search")

PositiveId = Annotated[StrictInt, Field(ge=1)]


class SearchParams(BaseModel):
    """Filters shared by every search tool."""

    model_config = ConfigDict(str_strip_whitespace=True)

    query: str | None = Field(default=None, description="Search text")
    ids: list[PositiveId] | None = Field(default=None, description="Exact ids to look up instead of a query")
    max_results: Annotated[StrictInt, Field(ge=1, le=500)] = 50
    archived: bool = Field(default=False, description="Search archived items only")
    verified: bool = Field(default=False, description="Verified items only (Metabase Enterprise)")


class SearchCardsParams(SearchParams):
    model_config = ConfigDict(json_schema_extra={"examples": [{"query": "revenue", "max_results": 10}]})

    database_id: PositiveId | None = Field(default=None, description="Only cards built on this database")
    search_native_query: bool = Field(default=False, description="Also match the SQL text of native cards")


class SearchDashboardsParams(SearchParams):
    model_config = ConfigDict(json_schema_extra={"examples": [{"query": "sales overview"}]})

    include_dashboard_questions: bool = Field(default=False, description="Include cards saved inside dashboards")


def _summary(item: JsonDict) -> JsonDict:
    return {
        "id": item.get("id"),
        "name": item.get("name"),
        "description": item.get("description"),
        "model": item.get("model"),
        "collection_name": (item.get("collection") or {}).get("name") or item.get("collection_name"),
        "database_id": item.get("database_id"),
        "archived": bool(item.get("archived", False)),
    }


class SearchTool(BaseTool[SearchParams]):
    """Base for the per-model search tools.

    Subclasses set `model` and the recommended follow-up, and may add
    model-specific query parameters via `_extra_params`.
    """

    model: ClassVar[str]
    follow_up: ClassVar[str]

    __slots__ = ("_client",)

    def __init__(self, client: MetabaseClient) -> None:
        self._client = client

    def _extra_params(self, params: Any) -> QueryParams:
        return []

    def _query_params(self, params: SearchParams) -> QueryParams:
        if not params.query and not params.ids:
            raise RequestValidationError("query", params.query, "Either a search query or ids is required")
        if params.query and params.ids:
            raise RequestValidationError("ids", params.ids, "Use either a search query or ids, not both")
        qp: QueryParams = [("models", self.model)]
        if params.query:
            qp.append(("q", params.query))
        qp.extend(("ids", str(i)) for i in params.ids or ())
        if params.archived:
            qp.append(("archived", "true"))
        if params.verified:
            qp.append(("verified", "true"))
        return qp + self._extra_params(params)

    async def _async_run(self, params: SearchParams) -> str:
        qp = self._query_params(params)
        request_id = new_request_id()
        with log_context(request_id=request_id, model=self.model):
            start = time.perf_counter()
            found = await self._client.search(qp)
            elapsed = round((time.perf_counter() - start) * 1000, 2)
            results = [_summary(i) for i in found if i.get("model") == self.model][:params.max_results]
            log.info("search completed", results=len(results), duration_ms=elapsed)
            return dumps({
                "request_id": request_id,
                "search_metrics": {
                    "method": "id_search" if params.ids else "query_search",
                    "total_results": len(results),
                    "search_time_ms": elapsed,
                    "parameters_used": params.model_dump(exclude_defaults=True),
                },
                "recommended_action": self.follow_up,
                "results": results,
            })


class SearchCardsTool(SearchTool):
    """Find saved cards (questions) by text or id."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="search_cards",
        description=(
            "Search Metabase cards (saved questions) by name and description, or look them up by id. "
            "Optionally match SQL text or restrict to one database."
        ),
        category="search",
    )
    params_schema: ClassVar[type[BaseModel]] = SearchCardsParams
    model = "card"
    follow_up = 'Use retrieve(model="card", ids=[...]) for definitions, or execute_card(card_id) to run one'

    def _extra_params(self, params: SearchCardsParams) -> QueryParams:
        qp: QueryParams = []
        if params.database_id is not None:
            qp.append(("table_db_id", str(params.database_id)))
        if params.search_native_query:
            qp.append(("search_native_query", "true"))
        return qp


class SearchDashboardsTool(SearchTool):
    """Find dashboards by text or id."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="search_dashboards",
        description="Search Metabase dashboards by name and description, or look them up by id.",
        category="search",
    )
    params_schema: ClassVar[type[BaseModel]] = SearchDashboardsParams
    model = "dashboard"
    follow_up = 'Use retrieve(model="dashboard", ids=[...]) to get every card on a dashboard'

    def _extra_params(self, params: SearchDashboardsParams) -> QueryParams:
        return [("include_dashboard_questions", "true")] if params.include_dashboard_questions else []
