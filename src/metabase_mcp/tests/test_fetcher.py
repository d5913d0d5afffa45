"""Tests for CachedFetcher: hit, fresh load, stale fallback, propagation."""

from __future__ import annotations

import asyncio

import pytest

from metabase_mcp.foundation.errors import UpstreamError
from metabase_mcp.io.cache import CachedFetcher, Provenance, ResourceCache


class CountingLoader:
    def __init__(self) -> None:
        self.calls = 0
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, key: int) -> dict:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return {"id": key, "call": self.calls}


def make_fetcher(ttl_ms: float = 60_000, **kw: object) -> tuple[CachedFetcher[int, dict], CountingLoader]:
    loader = CountingLoader()
    return CachedFetcher(ResourceCache("card", ttl_ms), loader, **kw), loader  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_ttl_lifecycle() -> None:
    """Fresh at t=0, hit at t=30s, fresh again at t=70s with a new fetch time."""
    fetcher, loader = make_fetcher(ttl_ms=60_000)

    first = await fetcher.fetch_or_load(5, now=0)
    assert first.provenance is Provenance.FRESH
    assert first.source == "api"
    assert first.fetched_at == 0

    second = await fetcher.fetch_or_load(5, now=30_000)
    assert second.provenance is Provenance.HIT
    assert second.latency_ms == 0
    assert second.value is first.value
    assert second.source == "cache"
    assert loader.calls == 1

    third = await fetcher.fetch_or_load(5, now=70_000)
    assert third.provenance is Provenance.FRESH
    assert third.fetched_at == 70_000
    assert third.value == {"id": 5, "call": 2}
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_stale_fallback_on_expired_entry(captured) -> None:
    fetcher, loader = make_fetcher(ttl_ms=1_000)
    await fetcher.fetch_or_load(7, now=0)

    loader.error = UpstreamError("boom")
    outcome = await fetcher.fetch_or_load(7, now=5_000)

    assert outcome.provenance is Provenance.STALE_FALLBACK
    assert outcome.value == {"id": 7, "call": 1}
    assert outcome.fetched_at == 0
    assert outcome.source == "cache"
    assert isinstance(outcome.error, UpstreamError)
    assert "upstream fetch failed, serving stale cached data" in captured.events("warning")
    # The stale entry is not refreshed by a failed load
    assert fetcher.cache.get(7).fetched_at == 0


@pytest.mark.asyncio
async def test_failure_without_entry_propagates() -> None:
    fetcher, loader = make_fetcher()
    loader.error = UpstreamError("down")

    with pytest.raises(UpstreamError, match="down"):
        await fetcher.fetch_or_load(1, now=0)
    assert 1 not in fetcher.cache


@pytest.mark.asyncio
async def test_clear_forces_fresh_load() -> None:
    fetcher, loader = make_fetcher()
    await fetcher.fetch_or_load(1, now=0)
    fetcher.cache.clear()

    outcome = await fetcher.fetch_or_load(1, now=10)
    assert outcome.provenance is Provenance.FRESH
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_duplicate_concurrent_keys_each_load_by_default() -> None:
    fetcher, loader = make_fetcher()
    loader.gate = asyncio.Event()

    pending = asyncio.gather(fetcher.fetch_or_load(3, now=0), fetcher.fetch_or_load(3, now=0))
    await asyncio.sleep(0)
    loader.gate.set()
    a, b = await pending

    assert loader.calls == 2
    assert a.provenance is b.provenance is Provenance.FRESH


@pytest.mark.asyncio
async def test_single_flight_shares_one_load() -> None:
    fetcher, loader = make_fetcher(single_flight=True)
    loader.gate = asyncio.Event()

    pending = asyncio.gather(*(fetcher.fetch_or_load(3, now=0) for _ in range(4)))
    await asyncio.sleep(0)
    loader.gate.set()
    outcomes = await pending

    assert loader.calls == 1
    assert all(o.value == {"id": 3, "call": 1} for o in outcomes)
    assert [o.provenance for o in outcomes] == [Provenance.FRESH] + [Provenance.SHARED] * 3
    assert [o.source for o in outcomes] == ["api", "cache", "cache", "cache"]


@pytest.mark.asyncio
async def test_single_flight_failure_reaches_every_waiter() -> None:
    fetcher, loader = make_fetcher(single_flight=True)
    loader.gate = asyncio.Event()
    loader.error = UpstreamError("down")

    pending = asyncio.gather(*(fetcher.fetch_or_load(3, now=0) for _ in range(3)), return_exceptions=True)
    await asyncio.sleep(0)
    loader.gate.set()
    outcomes = await pending

    assert loader.calls == 1
    assert all(isinstance(o, UpstreamError) for o in outcomes)
