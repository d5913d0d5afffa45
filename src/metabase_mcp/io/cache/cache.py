"""Per-resource-type TTL cache.

One ResourceCache instance exists per resource type (cards, dashboards, ...)
and per list type. Entries record when they were fetched; freshness is
checked lazily on read against a fixed TTL and expired entries are kept so
they can serve as a stale fallback when a refresh fails.

There is no size bound and no background eviction: the only ways an entry
leaves the cache are being replaced by a fresh fetch or an explicit clear().
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


def now_ms() -> float:
    """Wall clock in epoch milliseconds."""
    return time.time() * 1000


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    """A cached value and the time (epoch ms) it was fetched."""
    value: V
    fetched_at: float

    def age_ms(self, now: float) -> float:
        return now - self.fetched_at


class ResourceCache(Generic[K, V]):
    """TTL-aware key -> entry store for one resource type.

    Args:
        name: Resource label used in stats and logs (e.g. "card")
        ttl_ms: Maximum age in milliseconds at which an entry is still fresh

    Example:
        >>> cache: ResourceCache[int, dict] = ResourceCache("card", ttl_ms=60_000)
        >>> entry = cache.put(5, {"id": 5}, now=0)
        >>> cache.is_fresh(entry, now=30_000)
        True
        >>> cache.is_fresh(entry, now=60_000)
        False
    """

    __slots__ = ("_name", "_ttl_ms", "_entries")

    def __init__(self, name: str, ttl_ms: float) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self._name = name
        self._ttl_ms = ttl_ms
        self._entries: dict[K, CacheEntry[V]] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def ttl_ms(self) -> float:
        return self._ttl_ms

    def get(self, key: K) -> CacheEntry[V] | None:
        """Entry for key regardless of age, or None."""
        return self._entries.get(key)

    def put(self, key: K, value: V, now: float) -> CacheEntry[V]:
        """Store value as fetched at `now`, replacing any previous entry wholesale."""
        entry = CacheEntry(value, now)
        self._entries[key] = entry
        return entry

    def is_fresh(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.fetched_at < self._ttl_ms

    def clear(self) -> int:
        """Drop every entry. Returns count removed."""
        count = len(self._entries)
        self._entries.clear()
        return count

    @property
    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self, now: float | None = None) -> dict[str, object]:
        """Entry counts for monitoring."""
        at = now_ms() if now is None else now
        fresh = sum(1 for e in self._entries.values() if self.is_fresh(e, at))
        return {
            "resource": self._name,
            "total_entries": len(self._entries),
            "fresh_entries": fresh,
            "expired_entries": len(self._entries) - fresh,
            "ttl_ms": self._ttl_ms,
        }

    def __repr__(self) -> str:
        return f"ResourceCache({self._name!r}, ttl_ms={self._ttl_ms}, size={len(self._entries)})"
