"""clear_cache: administrative reset of item and list caches."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from metabase_mcp.resources import ResourceStore, clear_targets

from .base import BaseTool, ToolMetadata, dumps


class ClearCacheParams(BaseModel):
    cache_type: str = Field(default="all", description=f"What to clear: {', '.join(clear_targets())}")


class ClearCacheTool(BaseTool[ClearCacheParams]):
    """Drop cached entries so the next fetch goes to Metabase."""

    metadata: ClassVar[ToolMetadata] = ToolMetadata(
        name="clear_cache",
        description="Clear cached Metabase data for one resource type, all lists, all items, or everything.",
        category="admin",
    )
    params_schema: ClassVar[type[BaseModel]] = ClearCacheParams

    __slots__ = ("_store",)

    def __init__(self, store: ResourceStore) -> None:
        self._store = store

    async def _async_run(self, params: ClearCacheParams) -> str:
        report = self._store.clear(params.cache_type)
        return dumps({
            "message": report.message,
            "cache_type": report.cache_type,
            "cache_status": report.cache_status,
            "entries_cleared": report.entries_cleared,
            "next_fetch_will_be": "fresh from API",
            "cache_info": {
                "cleared_caches": list(report.caches),
                "ttl_ms": self._store.ttl_ms,
                "cache_explanation": (
                    "Unified cache system: individual items and lists are cached separately per resource type"
                ),
            },
        })
