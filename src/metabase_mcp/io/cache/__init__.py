"""Per-resource TTL caching with stale fallback.

- ResourceCache: generic TTL key -> entry store, one instance per resource type
- CachedFetcher: get-or-fetch over a ResourceCache with stale fallback
"""

from .cache import CacheEntry, Clock, ResourceCache, now_ms
from .fetcher import CachedFetcher, FetchOutcome, Loader, Provenance

__all__ = [
    "CacheEntry",
    "Clock",
    "ResourceCache",
    "now_ms",
    "CachedFetcher",
    "FetchOutcome",
    "Loader",
    "Provenance",
]
