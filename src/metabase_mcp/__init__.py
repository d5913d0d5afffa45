"""metabase_mcp - cached, bounded-concurrency Metabase retrieval over MCP.

Example:
    >>> from metabase_mcp import BatchRetriever, MetabaseClient, ResourceStore, ResourceType
    >>> client = MetabaseClient("https://metabase.example.com", api_key="mb_xxx")
    >>> retriever = BatchRetriever(ResourceStore.from_client(client))
    >>> result = await retriever.retrieve_many(ResourceType.CARD, [1, 2, 3])
"""

__version__ = "0.1.0"

from .foundation import (
    AggregateFailure,
    ErrorCode,
    MetabaseError,
    MetabaseSettings,
    RequestValidationError,
    ToolError,
    UpstreamError,
    get_settings,
)
from .io.cache import CachedFetcher, FetchOutcome, Provenance, ResourceCache
from .io.metabase import MetabaseClient
from .resources import ListType, ResourceStore, ResourceType
from .runtime.batch import BatchConfig, BatchRetriever, RetrievalResult

__all__ = [
    "__version__",
    "MetabaseSettings", "get_settings",
    "ErrorCode", "ToolError", "MetabaseError", "RequestValidationError", "UpstreamError", "AggregateFailure",
    "ResourceCache", "CachedFetcher", "FetchOutcome", "Provenance",
    "MetabaseClient",
    "ResourceType", "ListType", "ResourceStore",
    "BatchConfig", "BatchRetriever", "RetrievalResult",
]
