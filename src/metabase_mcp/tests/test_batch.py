"""Tests for wave planning and BatchRetriever aggregation."""

from __future__ import annotations

import pytest

from metabase_mcp.foundation.errors import AggregateFailure, ErrorCode, RequestValidationError
from metabase_mcp.io.cache import Provenance
from metabase_mcp.resources import ResourceStore, ResourceType
from metabase_mcp.runtime.batch import (
    BatchConfig,
    BatchRetriever,
    RetrievalMetrics,
    chunk_size_for,
    plan_batches,
)


# ═════════════════════════════════════════════════════════════════════════════
# Planning
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(("n", "size"), [(1, 1), (3, 3), (4, 8), (20, 8), (21, 5), (50, 5)])
def test_chunk_size_tiers(n: int, size: int) -> None:
    assert chunk_size_for(n) == size


@pytest.mark.parametrize(("n", "shape"), [
    (3, [3]),
    (10, [8, 2]),
    (30, [5, 5, 5, 5, 5, 5]),
    (21, [5, 5, 5, 5, 1]),
])
def test_plan_shapes(n: int, shape: list[int]) -> None:
    plan = plan_batches(list(range(1, n + 1)))
    assert plan.shape == shape
    assert [i for chunk in plan.chunks for i in chunk] == list(range(1, n + 1))


def test_plan_concurrency_is_capped_by_size() -> None:
    assert plan_batches([1, 2]).concurrency == 2
    assert plan_batches(list(range(1, 11))).concurrency == 8


def test_config_tiers_are_configurable() -> None:
    config = BatchConfig(small_threshold=1, medium_threshold=4, medium_chunk_size=2, large_chunk_size=3)
    assert plan_batches([1, 2, 3, 4], config).shape == [2, 2]
    assert plan_batches(list(range(1, 8)), config).shape == [3, 3, 1]


def test_config_rejects_inverted_thresholds() -> None:
    with pytest.raises(ValueError, match="small_threshold"):
        BatchConfig(small_threshold=20, medium_threshold=3)


@pytest.mark.parametrize(("hits", "calls", "source"), [(3, 1, "cache"), (1, 3, "api"), (2, 2, "mixed"), (0, 0, "mixed")])
def test_primary_source(hits: int, calls: int, source: str) -> None:
    metrics = RetrievalMetrics(hits, calls, 0, 1.0, 0, 1, 1)
    assert metrics.primary_source == source


# ═════════════════════════════════════════════════════════════════════════════
# Retrieval
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize(("n", "waves"), [(3, [3]), (10, [8, 2]), (30, [5] * 6)])
async def test_waves_run_in_sequence(store, upstream, n: int, waves: list[int]) -> None:
    result = await BatchRetriever(store).retrieve_many(ResourceType.CARD, list(range(1, n + 1)), now=0)

    assert upstream.waves == waves
    assert upstream.peak == waves[0]
    assert result.metrics.waves == len(waves)
    assert result.metrics.concurrency_used == waves[0]


@pytest.mark.asyncio
async def test_partial_failure_keeps_request_order(store, upstream) -> None:
    upstream.fail(2)

    result = await BatchRetriever(store).retrieve_many("card", [1, 2, 3], now=0)

    assert result.results == [{"id": 1, "type": "card", "version": 1}, {"id": 3, "type": "card", "version": 1}]
    assert [e.id for e in result.errors] == [2]
    assert "item 2 failed" in result.errors[0].message
    assert result.errors[0].http_status == 500
    assert (result.successful, result.failed) == (2, 1)
    assert result.is_partial and not result.is_complete


@pytest.mark.asyncio
async def test_all_failed_raises_aggregate(store, upstream) -> None:
    upstream.fail(4, 5)

    with pytest.raises(AggregateFailure) as exc_info:
        await BatchRetriever(store).retrieve_many(ResourceType.DASHBOARD, [4, 5], now=0)

    assert [e.id for e in exc_info.value.errors] == [4, 5]
    assert exc_info.value.code is ErrorCode.EXTERNAL_SERVICE_ERROR
    assert "Failed to retrieve dashboard(s)" in exc_info.value.message


@pytest.mark.asyncio
async def test_all_not_found_is_not_found(store, upstream) -> None:
    upstream.fail(4, 5, status=404)

    with pytest.raises(AggregateFailure) as exc_info:
        await BatchRetriever(store).retrieve_many(ResourceType.CARD, [4, 5], now=0)

    assert exc_info.value.code is ErrorCode.NOT_FOUND
    assert exc_info.value.message == "card not found: IDs 4, 5"
    assert not exc_info.value.recoverable


@pytest.mark.asyncio
async def test_all_denied_is_permission_denied(store, upstream) -> None:
    upstream.fail(9, status=403)

    with pytest.raises(AggregateFailure) as exc_info:
        await BatchRetriever(store).retrieve_many(ResourceType.TABLE, [9], now=0)

    assert exc_info.value.code is ErrorCode.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_all_failed_with_stale_cache_is_served(store, upstream) -> None:
    retriever = BatchRetriever(store)
    await retriever.retrieve_many(ResourceType.CARD, [4, 5], now=0)
    upstream.fail(4, 5)

    result = await retriever.retrieve_many(ResourceType.CARD, [4, 5], now=120_000)

    assert result.successful == 2
    assert all(r.provenance is Provenance.STALE_FALLBACK for r in result.retrieved)
    assert result.metrics.cache_hits == 2
    assert result.metrics.stale_fallbacks == 2
    assert result.metrics.primary_source == "cache"


@pytest.mark.asyncio
async def test_metrics_count_hits_and_calls(store, upstream) -> None:
    retriever = BatchRetriever(store)
    await retriever.retrieve_many(ResourceType.CARD, [1, 2], now=0)

    result = await retriever.retrieve_many(ResourceType.CARD, [1, 2, 3], now=1_000)

    assert (result.metrics.cache_hits, result.metrics.api_calls) == (2, 1)
    assert result.metrics.primary_source == "cache"
    assert [r.source for r in result.retrieved] == ["cache", "cache", "api"]
    assert upstream.count(1) == 1


@pytest.mark.asyncio
async def test_duplicate_ids_are_not_deduplicated(store, upstream) -> None:
    result = await BatchRetriever(store).retrieve_many(ResourceType.CARD, [7, 7], now=0)

    assert len(result.results) == 2
    assert upstream.count(7) == 2


@pytest.mark.asyncio
async def test_high_failure_rate_is_logged(store, upstream, captured) -> None:
    upstream.fail(1, 2)

    result = await BatchRetriever(store).retrieve_many(ResourceType.CARD, [1, 2, 3], now=0)

    assert result.failed == 2
    assert "high failure rate" in captured.events("warning")


@pytest.mark.asyncio
@pytest.mark.parametrize("ids", [[], [0], [-3], [1, "2"], [True]])
async def test_invalid_ids_rejected_before_fetch(store, upstream, ids: list) -> None:
    with pytest.raises(RequestValidationError):
        await BatchRetriever(store).retrieve_many(ResourceType.CARD, ids)
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_over_limit_rejected_before_fetch(store, upstream) -> None:
    with pytest.raises(RequestValidationError, match="At most 50"):
        await BatchRetriever(store).retrieve_many(ResourceType.CARD, list(range(1, 52)))
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_fifty_ids_is_accepted(store, upstream) -> None:
    result = await BatchRetriever(store).retrieve_many(ResourceType.FIELD, list(range(1, 51)), now=0)
    assert result.successful == 50
    assert len(upstream.calls) == 50


@pytest.mark.asyncio
async def test_database_limit(store, upstream) -> None:
    with pytest.raises(RequestValidationError, match="At most 2 databases"):
        await BatchRetriever(store).retrieve_many(ResourceType.DATABASE, [1, 2, 3])
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_unsupported_type_rejected(store, upstream) -> None:
    with pytest.raises(RequestValidationError, match="model"):
        await BatchRetriever(store).retrieve_many("question", [1])
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_single_flight_counts_one_api_call(upstream) -> None:
    store = ResourceStore(upstream.loader, upstream.list_loader, ttl_ms=60_000, single_flight=True)

    result = await BatchRetriever(store).retrieve_many(ResourceType.CARD, [7, 7, 7], now=0)

    assert upstream.count(7) == 1
    assert (result.metrics.api_calls, result.metrics.cache_hits) == (1, 2)
    assert [r.provenance for r in result.retrieved] == [Provenance.FRESH, Provenance.SHARED, Provenance.SHARED]
    assert result.metrics.primary_source == "cache"
