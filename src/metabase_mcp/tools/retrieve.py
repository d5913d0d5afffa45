"""retrieve: fetch Metabase resources by id through the batch engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from metabase_mcp.foundation.errors import JsonDict, RequestValidationError
from metabase_mcp.resources import ResourceType
from metabase_mcp.runtime.batch import BatchRetriever, RetrievalResult
from metabase_mcp.runtime.observability import get_logger, log_context

from .base import BaseTool, ToolMetadata, dumps, new_request_id, utc_now_iso

log = get_logger("metabase_mcp.tools.retrieve")

MAX_TABLE_LIMIT = 100


class RetrieveParams(BaseModel):
    """Parameters for the retrieve tool."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={"examples": [{"model": "card", "ids": [1, 2, 3]},
                                        {"model": "database", "ids": [1], "table_limit": 50}]},
    )

    model: str = Field(..., description=f"Resource type: {', '.join(ResourceType)}")
    ids: list[StrictInt] = Field(..., min_length=1, description="Resource ids (at most 50; databases at most 2)")
    table_offset: Annotated[StrictInt, Field(ge=0)] | None = Field(
        default=None, description="Databases only: index of the first table to include")
    table_limit: Annotated[StrictInt, Field(ge=1, le=MAX_TABLE_LIMIT)] | None = Field(
        default=None, description="Databases only: tables per page (at most 100)")

    @property
    def paginated(self) -> bool:
        return self.table_offset is not None or self.table_limit is not None


@dataclass(frozen=True, slots=True)
class TablePage:
    """Window over a database payload's `tables` list; the cached payload is left whole."""
    offset: int = 0
    limit: int | None = None

    def apply(self, database: JsonDict) -> JsonDict:
        tables = database.get("tables") or []
        end = len(tables) if self.limit is None else self.offset + self.limit
        page = tables[self.offset:end]
        pagination: dict[str, Any] = {
            "total_tables": len(tables),
            "table_offset": self.offset,
            "table_limit": self.limit if self.limit is not None else len(page),
            "current_page_size": len(page),
            "has_more": end < len(tables),
        }
        if pagination["has_more"]:
            pagination["next_offset"] = end
        return {**database, "tables": page, "pagination": pagination}


def render_retrieval(result: RetrievalResult, request_id: str, requested: int,
                     page: TablePage | None = None) -> dict[str, Any]:
    """Response body for a (possibly partial) retrieval."""
    m, rt = result.metrics, result.resource_type
    body: dict[str, Any] = {
        "model": rt.value,
        "request_id": request_id,
        "total_requested": requested,
        "successful_retrievals": result.successful,
        "failed_retrievals": result.failed,
        "data_source": {
            "cache_hits": m.cache_hits,
            "api_calls": m.api_calls,
            "stale_fallbacks": m.stale_fallbacks,
            "total_successful": result.successful,
            "primary_source": m.primary_source,
        },
        "performance_metrics": {
            "total_time_ms": m.total_time_ms,
            "average_time_per_item_ms": m.average_time_per_item_ms,
            "concurrency_used": m.concurrency_used,
            "waves": m.waves,
        },
        "retrieved_at": utc_now_iso(),
        "results": result.results if page is None else [page.apply(r) for r in result.results],
    }
    if result.failed:
        body["errors"] = [
            {"id": e.id, "error": e.message, "code": e.code.value, "recoverable": e.recoverable}
            for e in result.errors
        ]
        body["message"] = (f"Retrieved {result.successful}/{requested} {rt.plural} successfully. "
                           f"{result.failed} failed.")
    else:
        body["message"] = f"Successfully retrieved all {result.successful} {rt.value}(s)."
    return body


class RetrieveTool(BaseTool[RetrieveParams]):
    """Retrieve one or more resources of a single type by id.

    Ids are served from the per-type cache when fresh and fetched from
    Metabase otherwise, in bounded concurrent waves.
    """

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="retrieve",
        description=(
            "Fetch Metabase cards, dashboards, tables, databases, collections or fields by id. "
            "Up to 50 ids per call (2 for databases); results are cached per resource type. "
            "Large databases can be paged through their tables with table_offset and table_limit."
        ),
        category="retrieval",
    )
    params_schema: ClassVar[type[BaseModel]] = RetrieveParams

    __slots__ = ("_retriever",)

    def __init__(self, retriever: BatchRetriever) -> None:
        self._retriever = retriever

    async def _async_run(self, params: RetrieveParams) -> str:
        request_id = new_request_id()
        with log_context(request_id=request_id, model=params.model):
            log.debug("retrieve requested", ids=params.ids)
            page = self._table_page(params)
            result = await self._retriever.retrieve_many(params.model, params.ids)
            return dumps(render_retrieval(result, request_id, len(params.ids), page))

    @staticmethod
    def _table_page(params: RetrieveParams) -> TablePage | None:
        if not params.paginated:
            return None
        if ResourceType.parse(params.model) is not ResourceType.DATABASE:
            raise RequestValidationError(
                "table_offset/table_limit", params.model,
                "table_offset and table_limit are only supported for the database model",
            )
        return TablePage(params.table_offset or 0, params.table_limit)
