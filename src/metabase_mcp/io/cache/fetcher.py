"""Get-or-fetch over a ResourceCache with stale fallback.

CachedFetcher wraps one ResourceCache and an injected async ``load(key)``
that performs the upstream call:

1. A fresh entry is served as a HIT with zero latency and no upstream call.
2. Otherwise load() is attempted exactly once.
   - Success replaces the entry and is served as FRESH.
   - Failure with any entry on hand (fresh or expired) serves that entry as
     STALE_FALLBACK and never raises.
   - Failure with nothing cached propagates to the caller.
3. With single_flight on, a caller that joins a load already in flight for
   the same key is served as SHARED; only the caller that started the load
   reports FRESH.

No retries happen here; retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, Generic, Hashable, Literal, TypeVar

from metabase_mcp.runtime.observability import get_logger

from .cache import Clock, ResourceCache, now_ms

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Loader = Callable[[K], Awaitable[V]]

log = get_logger("metabase_mcp.cache")


class Provenance(StrEnum):
    """Where a served value came from."""
    HIT = "hit"
    FRESH = "fresh"
    SHARED = "shared"  # joined another caller's in-flight load
    STALE_FALLBACK = "stale_fallback"


@dataclass(frozen=True, slots=True)
class FetchOutcome(Generic[V]):
    """Value served by fetch_or_load, tagged with its provenance."""
    value: V
    provenance: Provenance
    latency_ms: float
    fetched_at: float
    error: Exception | None = None  # upstream failure behind a STALE_FALLBACK

    @property
    def source(self) -> Literal["cache", "api"]:
        """'api' only when the value was just loaded upstream."""
        return "api" if self.provenance is Provenance.FRESH else "cache"


class CachedFetcher(Generic[K, V]):
    """Cache-first loader for one resource type.

    Args:
        cache: The resource type's cache (shared by reference, not copied)
        load: Async upstream fetch for one key
        clock: Epoch-milliseconds clock used when no explicit `now` is given
        single_flight: Share one in-flight load among concurrent callers for
            the same key. Off by default, so duplicate keys each load.

    Example:
        >>> fetcher = CachedFetcher(ResourceCache("card", 60_000), client.load_card)
        >>> outcome = await fetcher.fetch_or_load(5)
        >>> outcome.provenance
        <Provenance.FRESH: 'fresh'>
    """

    __slots__ = ("_cache", "_load", "_clock", "_single_flight", "_inflight")

    def __init__(
        self,
        cache: ResourceCache[K, V],
        load: Loader[K, V],
        *,
        clock: Clock = now_ms,
        single_flight: bool = False,
    ) -> None:
        self._cache = cache
        self._load = load
        self._clock = clock
        self._single_flight = single_flight
        self._inflight: dict[K, asyncio.Future[V]] = {}

    @property
    def cache(self) -> ResourceCache[K, V]:
        return self._cache

    @property
    def single_flight(self) -> bool:
        return self._single_flight

    async def fetch_or_load(self, key: K, now: float | None = None) -> FetchOutcome[V]:
        """Serve key from cache when fresh, else load once with stale fallback."""
        at = self._clock() if now is None else now
        entry = self._cache.get(key)
        if entry is not None and self._cache.is_fresh(entry, at):
            log.debug("cache hit", resource=self._cache.name, key=key, age_ms=round(entry.age_ms(at)))
            return FetchOutcome(entry.value, Provenance.HIT, 0.0, entry.fetched_at)

        log.debug("cache miss" if entry is None else "cache entry expired",
                  resource=self._cache.name, key=key)
        start = time.perf_counter()
        try:
            if self._single_flight:
                value, owned = await self._load_shared(key)
            else:
                value, owned = await self._load(key), True
        except Exception as exc:
            elapsed = (time.perf_counter() - start) * 1000
            fallback = self._cache.get(key) or entry
            if fallback is None:
                raise
            log.warning("upstream fetch failed, serving stale cached data", resource=self._cache.name,
                        key=key, age_ms=round(fallback.age_ms(at)), error=str(exc))
            return FetchOutcome(fallback.value, Provenance.STALE_FALLBACK, elapsed, fallback.fetched_at, exc)

        elapsed = (time.perf_counter() - start) * 1000
        stored = self._cache.put(key, value, at)
        if not owned:
            log.debug("joined in-flight fetch", resource=self._cache.name, key=key)
            return FetchOutcome(value, Provenance.SHARED, elapsed, stored.fetched_at)
        log.debug("fetched from upstream", resource=self._cache.name, key=key, latency_ms=round(elapsed, 2))
        return FetchOutcome(value, Provenance.FRESH, elapsed, stored.fetched_at)

    async def _load_shared(self, key: K) -> tuple[V, bool]:
        """Join the pending load for key or start one.

        Returns the value and whether this caller owned the upstream call.
        """
        if (pending := self._inflight.get(key)) is not None:
            return await asyncio.shield(pending), False
        task = asyncio.ensure_future(self._load(key))
        self._inflight[key] = task
        try:
            return await task, True
        finally:
            self._inflight.pop(key, None)

    def __repr__(self) -> str:
        return f"CachedFetcher({self._cache!r}, single_flight={self._single_flight})"
