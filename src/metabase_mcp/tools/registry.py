"""Registry of the tools exposed by the server."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from .base import BaseTool, ToolMetadata

if TYPE_CHECKING:
    from metabase_mcp.io.metabase import MetabaseClient
    from metabase_mcp.resources import ResourceStore
    from metabase_mcp.runtime.batch import BatchRetriever


class ToolRegistry:
    """Name -> tool lookup for the server adapters.

    Example:
        >>> registry = build_registry(store, retriever)
        >>> registry.get("retrieve")
        <RetrieveTool 'retrieve'>
        >>> [m.name for m in registry.list_tools()]
        ['retrieve', 'list', 'clear_cache']
    """

    __slots__ = ("_tools",)

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool[BaseModel]] = {}

    def register(self, tool: BaseTool[BaseModel]) -> None:
        """Register a tool instance. Names must be unique."""
        name = tool.metadata.name
        if name in self._tools:
            raise ValueError(f"Tool '{name}' already registered")
        self._tools[name] = tool

    def get(self, name: str) -> BaseTool[BaseModel] | None:
        return self._tools.get(name)

    def __getitem__(self, name: str) -> BaseTool[BaseModel]:
        return self._tools[name]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self, *, enabled_only: bool = True) -> list[ToolMetadata]:
        return [t.metadata for t in self._tools.values() if not enabled_only or t.metadata.enabled]


def build_registry(
    store: ResourceStore,
    retriever: BatchRetriever,
    client: MetabaseClient | None = None,
) -> ToolRegistry:
    """Registry holding the retrieve, list and clear_cache tools.

    Search and execution talk to Metabase directly, so they are registered
    only when a client is given.
    """
    from .clear_cache import ClearCacheTool
    from .execute import ExecuteCardTool, ExecuteQueryTool
    from .listing import ListTool
    from .retrieve import RetrieveTool
    from .search import SearchCardsTool, SearchDashboardsTool

    tools: list[BaseTool] = [RetrieveTool(retriever), ListTool(store), ClearCacheTool(store)]
    if client is not None:
        tools += [SearchCardsTool(client), SearchDashboardsTool(client),
                  ExecuteCardTool(client), ExecuteQueryTool(client)]
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return registry
