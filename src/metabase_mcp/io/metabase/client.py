"""Async Metabase API client.

Supplies the upstream ``load`` capability for each resource type. Every call
is a single attempt: failures are mapped onto UpstreamError with an
ErrorCode and the HTTP status, and retry decisions are left to callers.

Example:
    >>> async with MetabaseClient("https://metabase.example.com", api_key="mb_xxx") as client:
    ...     card = await client.load(ResourceType.CARD, 12)
"""

from __future__ import annotations

import asyncio
import functools
from typing import TYPE_CHECKING, Any

import httpx
import orjson
from pydantic import SecretStr

from metabase_mcp.foundation.errors import ErrorCode, JsonDict, UpstreamError
from metabase_mcp.resources.types import (
    CARD_QUERY_PATH,
    COLLECTION_ITEMS_PATH,
    DATASET_PATH,
    ITEM_PATHS,
    LIST_PATHS,
    SEARCH_PATH,
    ListType,
    ResourceType,
)
from metabase_mcp.runtime.observability import get_logger

if TYPE_CHECKING:
    from metabase_mcp.foundation.config import MetabaseSettings
    from metabase_mcp.io.cache import Loader

log = get_logger("metabase_mcp.client")

USER_AGENT = "metabase-mcp/0.1"

QueryParams = list[tuple[str, str]]  # repeated keys allowed (models=card&models=dashboard)

_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.INVALID_PARAMS,
    401: ErrorCode.API_KEY_INVALID,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.NOT_FOUND,
    422: ErrorCode.INVALID_PARAMS,
    429: ErrorCode.RATE_LIMITED,
}


def code_for_status(status: int) -> ErrorCode:
    """Map an HTTP status to an ErrorCode (5xx and unknown 4xx are service errors)."""
    return _STATUS_CODES.get(status, ErrorCode.EXTERNAL_SERVICE_ERROR)


def _error_message(response: httpx.Response) -> str | None:
    """Pull Metabase's own message out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:300] or None
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        return str(msg) if msg else None
    if isinstance(body, str):
        return body[:300] or None
    return None


def _unwrap_data(body: Any) -> list[JsonDict]:
    """List endpoints return either a bare list or a {"data": [...]} envelope."""
    if isinstance(body, dict):
        body = body.get("data", [])
    return list(body) if isinstance(body, list) else []


def _raise_embedded_error(body: Any, operation: str) -> None:
    """Metabase answers some failed queries with 2xx and the error in the body."""
    if not isinstance(body, dict):
        return
    if body.get("error_type") == "invalid-parameter":
        raise UpstreamError(f"{operation} parameter validation failed: {body.get('error') or 'Invalid parameter values'}",
                            code=ErrorCode.INVALID_PARAMS, http_status=400, recoverable=False)
    if body.get("status") == "failed":
        raise UpstreamError(f"{operation} failed: {body.get('error') or 'Unknown error'}",
                            code=ErrorCode.EXTERNAL_SERVICE_ERROR)


class MetabaseClient:
    """httpx-backed client for the Metabase REST API.

    Args:
        base_url: Metabase root URL (no trailing /api)
        api_key: Sent as the X-API-KEY header when set
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    __slots__ = ("_base_url", "_api_key", "_timeout", "_transport", "_client")

    def __init__(
        self,
        base_url: str,
        *,
        api_key: SecretStr | str | None = None,
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key if isinstance(api_key, SecretStr) or api_key is None else SecretStr(api_key)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None  # Lazy httpx client

    @classmethod
    def from_settings(cls, settings: MetabaseSettings, *, transport: httpx.AsyncBaseTransport | None = None) -> MetabaseClient:
        return cls(settings.base_url, api_key=settings.api_key, timeout=settings.request_timeout, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    # ─────────────────────────────────────────────────────────────────
    # HTTP Client
    # ─────────────────────────────────────────────────────────────────

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self._api_key is not None:
            headers["X-API-KEY"] = self._api_key.get_secret_value()
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers(),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the httpx client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> MetabaseClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        label: str | None = None,
        params: QueryParams | None = None,
        body: JsonDict | None = None,
    ) -> Any:
        """Issue one request and decode JSON. Raises UpstreamError on any failure."""
        what = label or path
        client = await self._get_client()
        log.debug("requesting", method=method, path=path)
        try:
            response = await client.request(
                method, path, params=params,
                content=orjson.dumps(body) if body is not None else None,
            )
        except httpx.TimeoutException as e:
            log.warning("request timed out", path=path, timeout_s=self._timeout)
            raise UpstreamError(f"Request for {what} timed out after {self._timeout}s",
                                code=ErrorCode.TIMEOUT) from e
        except httpx.TransportError as e:
            log.warning("network error", path=path, error=str(e))
            raise UpstreamError(f"Network error fetching {what}: {e}", code=ErrorCode.NETWORK_ERROR) from e

        if response.is_error:
            status = response.status_code
            code = code_for_status(status)
            detail = _error_message(response)
            if code is ErrorCode.NOT_FOUND:
                message = f"{what} not found"
            elif code is ErrorCode.PERMISSION_DENIED:
                message = f"Access denied to {what}"
            else:
                message = f"Metabase request for {what} failed with status {status}"
            if detail:
                message = f"{message}: {detail}"
            log.warning("request failed", path=path, status=status, code=code.value)
            raise UpstreamError(message, code=code, http_status=status)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON in response for {what}", code=ErrorCode.PARSE_ERROR,
                                http_status=response.status_code, recoverable=False) from e

    async def get_json(self, path: str, *, label: str | None = None, params: QueryParams | None = None) -> Any:
        return await self._send("GET", path, label=label, params=params)

    async def post_json(self, path: str, body: JsonDict, *, label: str | None = None) -> Any:
        return await self._send("POST", path, label=label, body=body)

    # ─────────────────────────────────────────────────────────────────
    # Resource Loaders
    # ─────────────────────────────────────────────────────────────────

    async def load(self, resource_type: ResourceType, resource_id: int) -> JsonDict:
        """Fetch one resource's raw payload."""
        if resource_type is ResourceType.COLLECTION:
            return await self.load_collection(resource_id)
        label = f"{resource_type} {resource_id}"
        body = await self.get_json(ITEM_PATHS[resource_type].format(id=resource_id), label=label)
        if not isinstance(body, dict):
            raise UpstreamError(f"Unexpected payload for {label}", code=ErrorCode.PARSE_ERROR, recoverable=False)
        return body

    async def load_collection(self, collection_id: int) -> JsonDict:
        """Collection metadata merged with its items (both fetched concurrently)."""
        label = f"collection {collection_id}"
        meta, items = await asyncio.gather(
            self.get_json(ITEM_PATHS[ResourceType.COLLECTION].format(id=collection_id), label=label),
            self.get_json(COLLECTION_ITEMS_PATH.format(id=collection_id), label=f"{label} items"),
        )
        if not isinstance(meta, dict):
            raise UpstreamError(f"Unexpected payload for {label}", code=ErrorCode.PARSE_ERROR, recoverable=False)
        return {**meta, "items": _unwrap_data(items)}

    async def load_list(self, list_type: ListType) -> list[JsonDict]:
        """Fetch every resource of one kind."""
        body = await self.get_json(LIST_PATHS[list_type], label=f"{list_type} list")
        return _unwrap_data(body)

    def loader(self, resource_type: ResourceType) -> Loader[int, JsonDict]:
        """Bind load() to one resource type, as CachedFetcher expects."""
        return functools.partial(self.load, resource_type)

    def list_loader(self, list_type: ListType) -> Loader[str, list[JsonDict]]:
        async def _load(_key: str) -> list[JsonDict]:
            return await self.load_list(list_type)
        return _load

    # ─────────────────────────────────────────────────────────────────
    # Execution & Search
    # ─────────────────────────────────────────────────────────────────

    async def execute_card(self, card_id: int, parameters: list[JsonDict] | None = None) -> Any:
        """Run a saved card. The answer is a list of row objects or a {"data": ...} result."""
        body = await self.post_json(
            CARD_QUERY_PATH.format(id=card_id),
            {"parameters": parameters or [], "pivot_results": False, "format_rows": False},
            label=f"card {card_id}",
        )
        _raise_embedded_error(body, f"Card {card_id} execution")
        return body

    async def execute_native(self, database_id: int, query: str, parameters: list[JsonDict] | None = None) -> JsonDict:
        """Run native SQL against one database, exactly as given."""
        body = await self.post_json(
            DATASET_PATH,
            {
                "type": "native",
                "native": {"query": query, "template_tags": {}},
                "parameters": parameters or [],
                "database": database_id,
            },
            label=f"query on database {database_id}",
        )
        _raise_embedded_error(body, "SQL query execution")
        if not isinstance(body, dict):
            raise UpstreamError("Unexpected payload for SQL query execution", code=ErrorCode.PARSE_ERROR,
                                recoverable=False)
        return body

    async def search(self, params: QueryParams) -> list[JsonDict]:
        """Metabase full-text search; results come back inside a data envelope."""
        return _unwrap_data(await self.get_json(SEARCH_PATH, label="search", params=params))
