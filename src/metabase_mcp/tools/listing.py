"""list: fetch every resource of one kind, cached as a whole."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from metabase_mcp.resources import LIST_KEY, ListType, ResourceStore
from metabase_mcp.runtime.observability import get_logger, log_context

from .base import BaseTool, ToolMetadata, dumps, new_request_id, utc_now_iso

log = get_logger("metabase_mcp.tools.list")


class ListParams(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    model: str = Field(..., description=f"Resource kind to list: {', '.join(ListType)}")


class ListTool(BaseTool[ListParams]):
    """List all cards, dashboards, tables, databases or collections."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="list",
        description=(
            "List every Metabase card, dashboard, table, database or collection. "
            "Use retrieve with specific ids for full details."
        ),
        category="retrieval",
    )
    params_schema: ClassVar[type[BaseModel]] = ListParams

    __slots__ = ("_store",)

    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    async def _async_run(self, params: ListParams) -> str:
        list_type = ListType.parse(params.model)
        request_id = new_request_id()
        with log_context(request_id=request_id, model=list_type.value):
            outcome = await self._store.list_fetcher(list_type).fetch_or_load(LIST_KEY)
            items = outcome.value
            log.debug("list served", source=outcome.source, items=len(items))
            return dumps({
                "request_id": request_id,
                "model": list_type.value,
                "total_items": len(items),
                "source": outcome.source,
                "cache_status": "miss" if outcome.source == "api" else "hit",
                "fetch_time_ms": round(outcome.latency_ms, 2),
                "retrieved_at": utc_now_iso(),
                "message": f"Successfully listed {len(items)} {list_type} (source: {outcome.source}).",
                "results": items,
            })
