"""Resource kinds served by the retrieval engine."""

from __future__ import annotations

from enum import StrEnum

from metabase_mcp.foundation.errors import RequestValidationError


class ResourceType(StrEnum):
    """Individually retrievable Metabase entity kinds."""
    CARD = "card"
    DASHBOARD = "dashboard"
    TABLE = "table"
    DATABASE = "database"
    COLLECTION = "collection"
    FIELD = "field"

    @property
    def plural(self) -> str:
        return f"{self.value}s"

    @classmethod
    def parse(cls, value: object) -> ResourceType:
        """Case-insensitive lookup; raises RequestValidationError for anything else."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise RequestValidationError("model", value, f"Must be one of: {', '.join(cls)}")


class ListType(StrEnum):
    """Resource kinds that can be listed in one call."""
    CARDS = "cards"
    DASHBOARDS = "dashboards"
    TABLES = "tables"
    DATABASES = "databases"
    COLLECTIONS = "collections"

    @classmethod
    def parse(cls, value: object) -> ListType:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise RequestValidationError("model", value, f"Must be one of: {', '.join(cls)}")


# Upstream detail endpoints; collections also pull their items separately
ITEM_PATHS: dict[ResourceType, str] = {
    ResourceType.CARD: "/api/card/{id}",
    ResourceType.DASHBOARD: "/api/dashboard/{id}",
    ResourceType.TABLE: "/api/table/{id}/query_metadata",
    ResourceType.DATABASE: "/api/database/{id}?include=tables",
    ResourceType.COLLECTION: "/api/collection/{id}",
    ResourceType.FIELD: "/api/field/{id}",
}
COLLECTION_ITEMS_PATH = "/api/collection/{id}/items"

LIST_PATHS: dict[ListType, str] = {
    ListType.CARDS: "/api/card",
    ListType.DASHBOARDS: "/api/dashboard",
    ListType.TABLES: "/api/table",
    ListType.DATABASES: "/api/database",
    ListType.COLLECTIONS: "/api/collection",
}

# Execution and search endpoints; responses are never cached
CARD_QUERY_PATH = "/api/card/{id}/query/json"
DATASET_PATH = "/api/dataset"
SEARCH_PATH = "/api/search"
