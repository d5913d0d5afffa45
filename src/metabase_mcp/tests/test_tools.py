"""Tests for the retrieve, list and clear_cache tools and the MCP server."""

from __future__ import annotations

import asyncio

import httpx
import orjson
import pytest

from metabase_mcp.foundation.config import MetabaseSettings
from metabase_mcp.ext.mcp import SERVER_NAME, create_server
from metabase_mcp.resources import ResourceStore
from metabase_mcp.runtime.batch import BatchRetriever
from metabase_mcp.tools import ClearCacheTool, ListTool, RetrieveTool, build_registry


@pytest.fixture
def registry(store: ResourceStore):
    return build_registry(store, BatchRetriever(store))


def test_registry_contents(registry) -> None:
    assert [m.name for m in registry.list_tools()] == ["retrieve", "list", "clear_cache"]
    assert isinstance(registry["retrieve"], RetrieveTool)
    assert isinstance(registry["list"], ListTool)
    assert isinstance(registry["clear_cache"], ClearCacheTool)
    assert len(registry) == 3
    assert "search_cards" not in registry and "execute_query" not in registry


def test_duplicate_registration_rejected(registry, store: ResourceStore) -> None:
    with pytest.raises(ValueError, match="already registered"):
        registry.register(ListTool(store))


@pytest.mark.asyncio
async def test_retrieve_response_shape(registry) -> None:
    body = orjson.loads(await registry["retrieve"].ainvoke(model="card", ids=[1, 2]))

    assert body["model"] == "card"
    assert body["request_id"].startswith("req_")
    assert body["total_requested"] == 2
    assert body["successful_retrievals"] == 2
    assert body["failed_retrievals"] == 0
    assert body["data_source"]["primary_source"] == "api"
    assert body["data_source"]["api_calls"] == 2
    assert body["performance_metrics"]["concurrency_used"] == 2
    assert [r["id"] for r in body["results"]] == [1, 2]
    assert "errors" not in body
    assert body["message"] == "Successfully retrieved all 2 card(s)."


@pytest.mark.asyncio
async def test_retrieve_partial_lists_errors(registry, upstream) -> None:
    upstream.fail(2, status=404)

    body = orjson.loads(await registry["retrieve"].ainvoke(model="Dashboard", ids=[1, 2, 3]))

    assert body["failed_retrievals"] == 1
    assert body["errors"] == [{"id": 2, "error": "item 2 failed with 404", "code": "NOT_FOUND", "recoverable": False}]
    assert body["message"] == "Retrieved 2/3 dashboards successfully. 1 failed."


@pytest.mark.asyncio
async def test_retrieve_all_failed_renders_tool_error(registry, upstream) -> None:
    upstream.fail(4, 5, status=404)

    text = await registry["retrieve"].ainvoke(model="card", ids=[4, 5])

    assert text.startswith("**Tool Error (retrieve):** card not found: IDs 4, 5")
    assert "4: [NOT_FOUND]" in text


@pytest.mark.asyncio
async def test_retrieve_validation_errors_render(registry, upstream) -> None:
    too_many = await registry["retrieve"].ainvoke(model="card", ids=list(range(1, 52)))
    bad_model = await registry["retrieve"].ainvoke(model="question", ids=[1])
    missing = await registry["retrieve"].ainvoke(model="card")

    assert "At most 50 cards" in too_many
    assert "Invalid parameter 'model'" in bad_model
    assert "Invalid parameters" in missing
    assert upstream.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("ids", [[True], [1, False], ["3"], [2.0]])
async def test_retrieve_rejects_non_integer_ids(registry, upstream, ids: list) -> None:
    text = await registry["retrieve"].ainvoke(model="card", ids=ids)

    assert text.startswith("**Tool Error (retrieve):** Invalid parameters")
    assert upstream.calls == []


# ═════════════════════════════════════════════════════════════════════════════
# Database table pages
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def database_tool() -> tuple[RetrieveTool, list[int]]:
    calls: list[int] = []

    async def load(item_id: int) -> dict:
        calls.append(item_id)
        return {"id": item_id, "name": "warehouse", "tables": [{"id": t} for t in range(1, 8)]}

    store = ResourceStore(lambda rt: load, lambda lt: load, ttl_ms=60_000)
    return RetrieveTool(BatchRetriever(store)), calls


@pytest.mark.asyncio
async def test_database_tables_are_paged(database_tool) -> None:
    tool, calls = database_tool

    first = orjson.loads(await tool.ainvoke(model="database", ids=[1], table_limit=5))
    second = orjson.loads(await tool.ainvoke(model="database", ids=[1], table_offset=5, table_limit=5))

    page_one, page_two = first["results"][0], second["results"][0]
    assert [t["id"] for t in page_one["tables"]] == [1, 2, 3, 4, 5]
    assert page_one["pagination"] == {"total_tables": 7, "table_offset": 0, "table_limit": 5,
                                      "current_page_size": 5, "has_more": True, "next_offset": 5}
    assert [t["id"] for t in page_two["tables"]] == [6, 7]
    assert page_two["pagination"]["has_more"] is False
    assert "next_offset" not in page_two["pagination"]
    assert second["data_source"]["cache_hits"] == 1
    assert calls == [1]


@pytest.mark.asyncio
async def test_database_without_paging_is_whole(database_tool) -> None:
    tool, _ = database_tool

    body = orjson.loads(await tool.ainvoke(model="database", ids=[1]))

    assert len(body["results"][0]["tables"]) == 7
    assert "pagination" not in body["results"][0]


@pytest.mark.asyncio
async def test_table_paging_only_for_databases(registry, upstream) -> None:
    wrong_model = await registry["retrieve"].ainvoke(model="card", ids=[1], table_limit=5)
    too_large = await registry["retrieve"].ainvoke(model="database", ids=[1], table_limit=101)
    negative = await registry["retrieve"].ainvoke(model="database", ids=[1], table_offset=-1)

    assert "only supported for the database model" in wrong_model
    assert "Invalid parameters" in too_large
    assert "Invalid parameters" in negative
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_list_tool(registry, upstream) -> None:
    first = orjson.loads(await registry["list"].ainvoke(model="collections"))
    second = orjson.loads(await registry["list"].ainvoke(model="collections"))

    assert first["total_items"] == 2
    assert first["source"] == "api"
    assert second["source"] == "cache"
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_list_unknown_model(registry) -> None:
    text = await registry["list"].ainvoke(model="fields")
    assert text.startswith("**Tool Error (list):**")


@pytest.mark.asyncio
async def test_clear_cache_tool(registry, upstream) -> None:
    await registry["retrieve"].ainvoke(model="card", ids=[1])

    body = orjson.loads(await registry["clear_cache"].ainvoke(cache_type="cards"))
    again = orjson.loads(await registry["retrieve"].ainvoke(model="card", ids=[1]))

    assert body["message"] == "Cards cache cleared successfully"
    assert body["cache_status"] == "cards_cache_empty"
    assert body["entries_cleared"] == 1
    assert body["next_fetch_will_be"] == "fresh from API"
    assert "Unified cache system" in body["cache_info"]["cache_explanation"]
    assert again["data_source"]["api_calls"] == 1
    assert upstream.count(1) == 2


@pytest.mark.asyncio
async def test_clear_cache_defaults_to_all(registry) -> None:
    body = orjson.loads(await registry["clear_cache"].ainvoke())
    assert body["cache_type"] == "all"
    assert body["message"] == "All caches cleared successfully"


@pytest.mark.asyncio
async def test_tool_timeout_renders_error() -> None:
    async def slow(_: int) -> dict:
        await asyncio.sleep(1)
        return {}

    tool = RetrieveTool(BatchRetriever(ResourceStore(lambda rt: slow, lambda lt: slow, ttl_ms=1_000)))
    text = await tool.ainvoke(timeout=0.01, model="card", ids=[1])

    assert text.startswith("**Tool Error (retrieve):** Operation timed out after 0.01s")


# ═════════════════════════════════════════════════════════════════════════════
# Server
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def server():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/search":
            return httpx.Response(200, json={"data": [{"id": 9, "name": "Revenue", "model": "card"}]})
        if path == "/api/dataset":
            return httpx.Response(202, json={"data": {"cols": [{"name": "n"}], "rows": [[1], [2]]}})
        return httpx.Response(200, json={"id": int(path.rsplit("/", 1)[-1]), "path": path})

    settings = MetabaseSettings(url="https://metabase.example.com", api_key="mb_test")
    return create_server(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_server_invoke_end_to_end(server) -> None:
    try:
        body = orjson.loads(await server.invoke("retrieve", {"model": "card", "ids": [3, 4]}))
        missing = await server.invoke("nope", {})
    finally:
        await server.aclose()

    assert server.name == SERVER_NAME
    assert [r["id"] for r in body["results"]] == [3, 4]
    assert "Tool 'nope' not found" in missing


@pytest.mark.asyncio
async def test_server_registers_every_tool(server) -> None:
    await server.aclose()
    assert [m.name for m in server.registry.list_tools()] == [
        "retrieve", "list", "clear_cache",
        "search_cards", "search_dashboards", "execute_card", "execute_query",
    ]


@pytest.mark.asyncio
async def test_server_search_execute_and_resources(server) -> None:
    try:
        found = orjson.loads(await server.invoke("search_cards", {"query": "revenue"}))
        ran = orjson.loads(await server.invoke("execute_query", {"database_id": 1, "query": "SELECT n FROM t"}))
        card = orjson.loads(await server.read_resource("metabase://card/7"))
        again = orjson.loads(await server.invoke("retrieve", {"model": "card", "ids": [7]}))
    finally:
        await server.aclose()

    assert [r["id"] for r in found["results"]] == [9]
    assert ran["rows"] == [{"n": 1}, {"n": 2}]
    assert card == {"id": 7, "path": "/api/card/7"}
    assert again["data_source"]["cache_hits"] == 1
