"""Tools exposed to MCP clients.

- retrieve: resources by id through the caching batch engine
- list: every resource of one kind
- clear_cache: administrative cache reset
- search_cards / search_dashboards: Metabase search narrowed to one model
- execute_card / execute_query: run a saved card or native SQL
"""

from .base import BaseTool, ToolMetadata, dumps
from .clear_cache import ClearCacheParams, ClearCacheTool
from .execute import ExecuteCardParams, ExecuteCardTool, ExecuteQueryParams, ExecuteQueryTool, rows_from
from .listing import ListParams, ListTool
from .registry import ToolRegistry, build_registry
from .retrieve import RetrieveParams, RetrieveTool, TablePage, render_retrieval
from .search import SearchCardsParams, SearchCardsTool, SearchDashboardsParams, SearchDashboardsTool

__all__ = [
    "BaseTool", "ToolMetadata", "dumps",
    "RetrieveTool", "RetrieveParams", "TablePage", "render_retrieval",
    "ListTool", "ListParams",
    "ClearCacheTool", "ClearCacheParams",
    "SearchCardsTool", "SearchCardsParams", "SearchDashboardsTool", "SearchDashboardsParams",
    "ExecuteCardTool", "ExecuteCardParams", "ExecuteQueryTool", "ExecuteQueryParams", "rows_from",
    "ToolRegistry", "build_registry",
]
