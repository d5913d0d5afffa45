"""MCP resource templates: metabase://{card,dashboard,database}/{id}.

Reads go through the same per-type CachedFetcher as the retrieve tool, so a
resource read warms the cache for later tool calls and vice versa.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from metabase_mcp.foundation.errors import RequestValidationError
from metabase_mcp.resources import ResourceType
from metabase_mcp.runtime.observability import get_logger
from metabase_mcp.tools import dumps

if TYPE_CHECKING:
    from metabase_mcp.resources import ResourceStore

log = get_logger("metabase_mcp.resources")

SCHEME = "metabase"
MIME_TYPE = "application/json"


@dataclass(frozen=True, slots=True)
class ResourceTemplate:
    resource_type: ResourceType
    description: str

    @property
    def uri_template(self) -> str:
        return f"{SCHEME}://{self.resource_type}/{{id}}"

    @property
    def name(self) -> str:
        return f"metabase_{self.resource_type}"


TEMPLATES: tuple[ResourceTemplate, ...] = (
    ResourceTemplate(ResourceType.CARD, "A Metabase card (saved question) with its query definition"),
    ResourceTemplate(ResourceType.DASHBOARD, "A Metabase dashboard with its cards"),
    ResourceTemplate(ResourceType.DATABASE, "A Metabase database with its tables"),
)

_URI = re.compile(rf"^{SCHEME}://(?P<type>[a-z]+)/(?P<id>[^/]+)$")


class ResourceReader:
    """Serves resource URIs from a ResourceStore.

    Example:
        >>> reader = ResourceReader(store)
        >>> text = await reader.read("metabase://card/12")
    """

    __slots__ = ("_store", "_types")

    def __init__(self, store: ResourceStore, templates: tuple[ResourceTemplate, ...] = TEMPLATES) -> None:
        self._store = store
        self._types = {t.resource_type.value: t.resource_type for t in templates}

    def parse(self, uri: str) -> tuple[ResourceType, int]:
        """Split a resource URI into its type and a positive id."""
        if not (m := _URI.match(uri)) or m["type"] not in self._types:
            raise RequestValidationError("uri", uri, f"Expected {SCHEME}://<{'|'.join(self._types)}>/<id>")
        return self._types[m["type"]], self.parse_id(m["id"])

    @staticmethod
    def parse_id(raw: str) -> int:
        if not raw.isdigit() or int(raw) < 1:
            raise RequestValidationError("id", raw, "Must be a positive integer")
        return int(raw)

    async def read(self, uri: str) -> str:
        """JSON text of one resource; upstream failures with nothing cached propagate."""
        resource_type, resource_id = self.parse(uri)
        return await self.read_item(resource_type, resource_id)

    async def read_item(self, resource_type: ResourceType, resource_id: int) -> str:
        outcome = await self._store.fetcher(resource_type).fetch_or_load(resource_id)
        log.debug("resource read", resource=resource_type.value, id=resource_id, source=outcome.source)
        return dumps(outcome.value)
