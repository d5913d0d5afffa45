"""Process-lifetime registry of resource caches and their fetchers.

A ResourceStore owns one ResourceCache + CachedFetcher per ResourceType and
per ListType. Caches are explicit instances handed to whoever needs them,
so tests build a store around fake loaders and explicit timestamps.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, ConfigDict

from metabase_mcp.foundation.errors import JsonDict, RequestValidationError
from metabase_mcp.io.cache import CachedFetcher, Clock, Loader, ResourceCache, now_ms
from metabase_mcp.runtime.observability import get_logger

from .types import ListType, ResourceType

if TYPE_CHECKING:
    from metabase_mcp.foundation.config import MetabaseSettings
    from metabase_mcp.io.metabase import MetabaseClient

log = get_logger("metabase_mcp.store")

LIST_KEY = "all"  # List caches hold a single entry

ItemLoaderFactory = Callable[[ResourceType], Loader[int, JsonDict]]
ListLoaderFactory = Callable[[ListType], Loader[str, list[JsonDict]]]


class ClearReport(BaseModel):
    """Outcome of an administrative cache clear."""

    model_config = ConfigDict(frozen=True)

    cache_type: str
    message: str
    cache_status: str
    entries_cleared: int
    caches: tuple[str, ...]


def clear_targets() -> tuple[str, ...]:
    """Every accepted clear_cache target, in display order."""
    return (
        "all",
        *(rt.plural for rt in ResourceType),
        *(f"{lt}-list" for lt in ListType),
        "all-lists",
        "all-individual",
    )


class ResourceStore:
    """Owns the item and list caches for one Metabase instance.

    Args:
        item_loader: Returns the upstream load(id) for a resource type
        list_loader: Returns the upstream load(key) for a list type
        ttl_ms: Entry time-to-live shared by every cache
        single_flight: Share concurrent loads of the same key
        clock: Epoch-ms clock passed to every fetcher

    Example:
        >>> store = ResourceStore.from_client(client, ttl_ms=600_000)
        >>> outcome = await store.fetcher(ResourceType.CARD).fetch_or_load(12)
        >>> store.clear("cards").message
        'Cards cache cleared successfully'
    """

    __slots__ = ("_items", "_lists", "_ttl_ms")

    def __init__(
        self,
        item_loader: ItemLoaderFactory,
        list_loader: ListLoaderFactory,
        *,
        ttl_ms: float = 600_000,
        single_flight: bool = False,
        clock: Clock = now_ms,
    ) -> None:
        self._ttl_ms = ttl_ms
        self._items: dict[ResourceType, CachedFetcher[int, JsonDict]] = {
            rt: CachedFetcher(ResourceCache(rt.value, ttl_ms), item_loader(rt),
                              clock=clock, single_flight=single_flight)
            for rt in ResourceType
        }
        self._lists: dict[ListType, CachedFetcher[str, list[JsonDict]]] = {
            lt: CachedFetcher(ResourceCache(f"{lt}-list", ttl_ms), list_loader(lt),
                              clock=clock, single_flight=single_flight)
            for lt in ListType
        }

    @classmethod
    def from_client(cls, client: MetabaseClient, **kwargs: object) -> ResourceStore:
        return cls(client.loader, client.list_loader, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def from_settings(cls, settings: MetabaseSettings, client: MetabaseClient) -> ResourceStore:
        return cls.from_client(client, ttl_ms=settings.cache.ttl_ms, single_flight=settings.cache.single_flight)

    @property
    def ttl_ms(self) -> float:
        return self._ttl_ms

    def fetcher(self, resource_type: ResourceType) -> CachedFetcher[int, JsonDict]:
        return self._items[resource_type]

    def list_fetcher(self, list_type: ListType) -> CachedFetcher[str, list[JsonDict]]:
        return self._lists[list_type]

    def cache(self, resource_type: ResourceType) -> ResourceCache[int, JsonDict]:
        return self._items[resource_type].cache

    def list_cache(self, list_type: ListType) -> ResourceCache[str, list[JsonDict]]:
        return self._lists[list_type].cache

    # ─────────────────────────────────────────────────────────────────
    # Administrative clear
    # ─────────────────────────────────────────────────────────────────

    def _resolve(self, target: str) -> tuple[list[ResourceCache], str, str]:
        """Map a clear target onto (caches, message, status tag)."""
        items = [f.cache for f in self._items.values()]
        lists = [f.cache for f in self._lists.values()]
        match target:
            case "all":
                return items + lists, "All caches cleared successfully", "all_caches_empty"
            case "all-individual":
                return items, "All individual item caches cleared successfully", "individual_caches_empty"
            case "all-lists":
                return lists, "All list caches cleared successfully", "list_caches_empty"
        if target.endswith("-list"):
            try:
                lt = ListType(target.removesuffix("-list"))
            except ValueError:
                pass
            else:
                label = lt.value.capitalize()
                return [self._lists[lt].cache], f"{label} list cache cleared successfully", f"{lt}_list_cache_empty"
        for rt in ResourceType:
            if rt.plural == target:
                label = rt.plural.capitalize()
                return [self._items[rt].cache], f"{label} cache cleared successfully", f"{rt.plural}_cache_empty"
        raise RequestValidationError("cache_type", target, f"Must be one of: {', '.join(clear_targets())}")

    def clear(self, target: str = "all") -> ClearReport:
        """Drop cached entries for one type, one group, or everything."""
        if not isinstance(target, str):
            raise RequestValidationError("cache_type", target, f"Must be one of: {', '.join(clear_targets())}")
        key = target.strip().lower()
        caches, message, status = self._resolve(key)
        dropped = sum(c.clear() for c in caches)
        log.info("cache cleared", target=key, caches=[c.name for c in caches], entries=dropped)
        return ClearReport(cache_type=key, message=message, cache_status=status,
                           entries_cleared=dropped, caches=tuple(c.name for c in caches))

    def stats(self, now: float | None = None) -> dict[str, dict[str, object]]:
        """Per-cache entry counts keyed by cache name."""
        at = now_ms() if now is None else now
        return {f.cache.name: f.cache.stats(at) for f in (*self._items.values(), *self._lists.values())}

    def __repr__(self) -> str:
        total = sum(len(f.cache) for f in (*self._items.values(), *self._lists.values()))
        return f"ResourceStore(ttl_ms={self._ttl_ms}, entries={total})"
