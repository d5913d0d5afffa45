"""FastMCP server exposing the Metabase tools.

Example - stdio (Claude Desktop, Cursor):
    $ METABASE_URL=https://metabase.example.com METABASE_API_KEY=mb_xxx metabase-mcp

Example - HTTP transport:
    $ metabase-mcp --transport streamable-http --port 8080

Example - embedded:
    >>> server = create_server(get_settings())
    >>> server.run(transport="sse", port=8080)
"""

from __future__ import annotations

import argparse
from typing import TYPE_CHECKING, Literal, Sequence

import httpx
from pydantic import ValidationError

from metabase_mcp.foundation.config import MetabaseSettings, get_settings
from metabase_mcp.foundation.errors import ErrorCode, MetabaseError, RequestValidationError, ToolError
from metabase_mcp.io.metabase import MetabaseClient
from metabase_mcp.resources import ResourceStore
from metabase_mcp.runtime.batch import BatchConfig, BatchRetriever
from metabase_mcp.runtime.observability import configure_logging, get_logger
from metabase_mcp.tools import ToolRegistry, build_registry

from .resources import MIME_TYPE, TEMPLATES, ResourceReader, ResourceTemplate

if TYPE_CHECKING:
    from fastmcp import FastMCP

Transport = Literal["stdio", "sse", "streamable-http"]

SERVER_NAME = "metabase"

log = get_logger("metabase_mcp.server")


class MCPServer:
    """FastMCP-backed server over a ToolRegistry and, optionally, a ResourceReader.

    Tool failures come back as rendered ToolError text; nothing raises
    through the transport.
    """

    __slots__ = ("_name", "_registry", "_timeout", "_client", "_resources", "_mcp")

    def __init__(
        self,
        name: str,
        registry: ToolRegistry,
        *,
        timeout: float = 900.0,
        client: MetabaseClient | None = None,
        resources: ResourceReader | None = None,
    ) -> None:
        self._name = name
        self._registry = registry
        self._timeout = timeout
        self._client = client
        self._resources = resources
        self._mcp = self._create_server()

    @property
    def name(self) -> str:
        return self._name

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def fastmcp(self) -> FastMCP:
        """Access underlying FastMCP instance."""
        return self._mcp

    async def invoke(self, tool_name: str, params: dict[str, object]) -> str:
        """Invoke a tool by name. Returns structured error text instead of raising."""
        tool = self._registry.get(tool_name)
        if tool is None:
            return ToolError.create(tool_name, f"Tool '{tool_name}' not found",
                                    ErrorCode.NOT_FOUND, recoverable=False).render()
        return await tool.ainvoke(self._timeout, **params)

    async def read_resource(self, uri: str) -> str:
        """Read a metabase:// resource URI. Raises MetabaseError on failure."""
        if self._resources is None:
            raise RequestValidationError("uri", uri, "This server exposes no resources")
        return await self._resources.read(uri)

    def _create_server(self) -> FastMCP:
        from fastmcp import FastMCP

        mcp = FastMCP(self._name)
        self._register_tools(mcp)
        self._register_resources(mcp)
        return mcp

    def _register_tools(self, mcp: FastMCP) -> None:
        """Typed handlers so FastMCP can derive each tool's input schema."""
        meta = {m.name: m for m in self._registry.list_tools()}

        if "retrieve" in meta:
            async def retrieve(model: str, ids: list[int], table_offset: int | None = None,
                               table_limit: int | None = None) -> str:
                return await self.invoke("retrieve", _given(
                    model=model, ids=ids, table_offset=table_offset, table_limit=table_limit))
            mcp.tool(name="retrieve", description=meta["retrieve"].description)(retrieve)

        if "list" in meta:
            async def list_resources(model: str) -> str:
                return await self.invoke("list", {"model": model})
            mcp.tool(name="list", description=meta["list"].description)(list_resources)

        if "clear_cache" in meta:
            async def clear_cache(cache_type: str = "all") -> str:
                return await self.invoke("clear_cache", {"cache_type": cache_type})
            mcp.tool(name="clear_cache", description=meta["clear_cache"].description)(clear_cache)

        if "search_cards" in meta:
            async def search_cards(query: str | None = None, ids: list[int] | None = None, max_results: int = 50,
                                   database_id: int | None = None, search_native_query: bool = False,
                                   archived: bool = False, verified: bool = False) -> str:
                return await self.invoke("search_cards", _given(
                    query=query, ids=ids, max_results=max_results, database_id=database_id,
                    search_native_query=search_native_query, archived=archived, verified=verified))
            mcp.tool(name="search_cards", description=meta["search_cards"].description)(search_cards)

        if "search_dashboards" in meta:
            async def search_dashboards(query: str | None = None, ids: list[int] | None = None,
                                        max_results: int = 50, include_dashboard_questions: bool = False,
                                        archived: bool = False, verified: bool = False) -> str:
                return await self.invoke("search_dashboards", _given(
                    query=query, ids=ids, max_results=max_results,
                    include_dashboard_questions=include_dashboard_questions, archived=archived, verified=verified))
            mcp.tool(name="search_dashboards", description=meta["search_dashboards"].description)(search_dashboards)

        if "execute_card" in meta:
            async def execute_card(card_id: int, card_parameters: list[dict] | None = None,
                                   row_limit: int = 500) -> str:
                return await self.invoke("execute_card", _given(
                    card_id=card_id, card_parameters=card_parameters, row_limit=row_limit))
            mcp.tool(name="execute_card", description=meta["execute_card"].description)(execute_card)

        if "execute_query" in meta:
            async def execute_query(database_id: int, query: str, native_parameters: list[dict] | None = None,
                                    row_limit: int = 500) -> str:
                return await self.invoke("execute_query", _given(
                    database_id=database_id, query=query, native_parameters=native_parameters,
                    row_limit=row_limit))
            mcp.tool(name="execute_query", description=meta["execute_query"].description)(execute_query)

    def _register_resources(self, mcp: FastMCP) -> None:
        """One URI template per resource kind, read through the store's caches."""
        if self._resources is None:
            return
        from fastmcp.exceptions import ResourceError

        reader = self._resources

        def handler(template: ResourceTemplate):
            async def read(id: str) -> str:  # noqa: A002 - name fixed by the URI template
                try:
                    return await reader.read_item(template.resource_type, reader.parse_id(id))
                except MetabaseError as e:
                    raise ResourceError(e.message) from e
            return read

        for template in TEMPLATES:
            mcp.resource(template.uri_template, name=template.name, description=template.description,
                         mime_type=MIME_TYPE)(handler(template))

    def run(self, transport: Transport = "stdio", *, host: str = "127.0.0.1", port: int = 8080) -> None:
        """Start serving (blocking).

        Args:
            transport: "stdio" (CLI), "sse" (HTTP), "streamable-http"
            host: Host for HTTP transports
            port: Port for HTTP transports
        """
        log.info("server starting", server=self._name, transport=transport,
                 tools=[m.name for m in self._registry.list_tools()])
        if transport == "stdio":
            self._mcp.run()
        else:
            self._mcp.run(transport=transport, host=host, port=port)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def create_server(
    settings: MetabaseSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MCPServer:
    """Wire settings -> client -> store -> retriever -> tools and resources -> server."""
    settings = settings or get_settings()
    client = MetabaseClient.from_settings(settings, transport=transport)
    store = ResourceStore.from_settings(settings, client)
    retriever = BatchRetriever(store, BatchConfig.from_settings(settings.batch))
    return MCPServer(SERVER_NAME, build_registry(store, retriever, client), timeout=settings.tool_timeout,
                     client=client, resources=ResourceReader(store))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="metabase-mcp", description="Metabase tools over MCP")
    parser.add_argument("--transport", choices=["stdio", "sse", "streamable-http"], default="stdio")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Console entry point."""
    args = _parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        configure_logging("console", "ERROR")
        log.error("invalid configuration", error=str(e))
        return 2
    configure_logging(settings.logging.format, settings.logging.level)
    create_server(settings).run(args.transport, host=args.host, port=args.port)
    return 0


def _given(**params: object) -> dict[str, object]:
    """Drop arguments the caller left unset so the tool's own defaults apply."""
    return {k: v for k, v in params.items() if v is not None}
