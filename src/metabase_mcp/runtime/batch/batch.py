"""Batch retrieval engine for resource ids.

Fetches many ids of one resource type through that type's CachedFetcher:
- Ids are split into waves whose size depends only on the request size
- Waves run strictly in sequence, ids within a wave run concurrently
- A failing id never aborts its siblings; outcomes are placed by index
- Every id failing is raised as one AggregateFailure

Design: Each id resolves to a Result[RetrievedItem, ItemError] so successes
and per-id failures travel side by side until aggregation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, Iterator, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from metabase_mcp.foundation.errors import (
    AggregateFailure,
    Err,
    ErrorCode,
    ItemError,
    JsonDict,
    Ok,
    RequestValidationError,
    Result,
)
from metabase_mcp.io.cache import Provenance
from metabase_mcp.resources.types import ResourceType
from metabase_mcp.runtime.observability import get_logger

if TYPE_CHECKING:
    from metabase_mcp.foundation.config import BatchSettings
    from metabase_mcp.resources.store import ResourceStore

log = get_logger("metabase_mcp.batch")

PrimarySource = Literal["cache", "api", "mixed"]


# ═══════════════════════════════════════════════════════════════════════════════
# Configuration & Planning
# ═══════════════════════════════════════════════════════════════════════════════


class BatchConfig(BaseModel):
    """Request limits and wave-size tiers.

    Example:
        >>> config = BatchConfig(max_ids=50, large_chunk_size=5)
        >>> plan_batches(list(range(1, 31)), config).waves
        6
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", validate_default=True,
        json_schema_extra={"title": "Batch Configuration", "examples": [{"max_ids": 50, "medium_chunk_size": 8}]},
    )

    max_ids: Annotated[int, Field(ge=1)] = 50
    max_database_ids: Annotated[int, Field(ge=1)] = 2
    small_threshold: Annotated[int, Field(ge=1)] = 3
    medium_threshold: Annotated[int, Field(ge=1)] = 20
    medium_chunk_size: Annotated[int, Field(ge=1)] = 8
    large_chunk_size: Annotated[int, Field(ge=1)] = 5

    @model_validator(mode="after")
    def _check_tiers(self) -> BatchConfig:
        if self.small_threshold >= self.medium_threshold:
            raise ValueError("small_threshold must be below medium_threshold")
        return self

    @classmethod
    def from_settings(cls, settings: BatchSettings) -> BatchConfig:
        return cls(**settings.model_dump())

    def limit_for(self, resource_type: ResourceType) -> int:
        """Maximum ids per request; database metadata is large enough to warrant its own cap."""
        return min(self.max_database_ids, self.max_ids) if resource_type is ResourceType.DATABASE else self.max_ids


DEFAULT_BATCH_CONFIG = BatchConfig()


def chunk_size_for(n: int, config: BatchConfig = DEFAULT_BATCH_CONFIG) -> int:
    """Wave size as a pure function of the request size."""
    if n <= config.small_threshold:
        return max(n, 1)
    if n <= config.medium_threshold:
        return config.medium_chunk_size
    return config.large_chunk_size


@dataclass(frozen=True, slots=True)
class BatchPlan:
    """Ids partitioned into ordered waves."""
    chunks: tuple[tuple[int, ...], ...]
    chunk_size: int

    @property
    def waves(self) -> int: return len(self.chunks)

    @property
    def total(self) -> int: return sum(len(c) for c in self.chunks)

    @property
    def concurrency(self) -> int:
        """Largest number of ids in flight at once."""
        return min(self.chunk_size, self.total)

    @property
    def shape(self) -> list[int]: return [len(c) for c in self.chunks]


def plan_batches(ids: Sequence[int], config: BatchConfig = DEFAULT_BATCH_CONFIG) -> BatchPlan:
    size = chunk_size_for(len(ids), config)
    return BatchPlan(tuple(tuple(ids[i:i + size]) for i in range(0, len(ids), size)), size)


def validate_ids(resource_type: object, ids: object, config: BatchConfig = DEFAULT_BATCH_CONFIG) -> tuple[ResourceType, list[int]]:
    """Reject malformed requests before anything is fetched."""
    rt = ResourceType.parse(resource_type)
    if not isinstance(ids, (list, tuple)):
        raise RequestValidationError("ids", ids, "Must be a list of positive integers")
    if not ids:
        raise RequestValidationError("ids", ids, "At least one id is required")
    limit = config.limit_for(rt)
    if len(ids) > limit:
        raise RequestValidationError(
            "ids", f"{len(ids)} ids",
            f"At most {limit} {rt.plural} can be retrieved per request; split the ids into smaller requests",
        )
    for i in ids:
        if isinstance(i, bool) or not isinstance(i, int) or i < 1:
            raise RequestValidationError("ids", i, "Every id must be a positive integer")
    return rt, list(ids)


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RetrievedItem:
    """One successfully served id."""
    id: int
    payload: JsonDict
    provenance: Provenance
    latency_ms: float

    @property
    def source(self) -> Literal["cache", "api"]:
        return "api" if self.provenance is Provenance.FRESH else "cache"


@dataclass(frozen=True, slots=True)
class BatchItem:
    """Outcome for the id at `index` of the request."""
    index: int
    id: int
    result: Result[RetrievedItem, ItemError]
    elapsed_ms: float

    @property
    def is_ok(self) -> bool: return self.result.is_ok()

    @property
    def is_err(self) -> bool: return self.result.is_err()


@dataclass(frozen=True, slots=True)
class RetrievalMetrics:
    """Counters and timings for one retrieve_many call."""
    cache_hits: int
    api_calls: int
    stale_fallbacks: int
    total_time_ms: float
    average_time_per_item_ms: int
    concurrency_used: int
    waves: int

    @property
    def primary_source(self) -> PrimarySource:
        if self.cache_hits > self.api_calls:
            return "cache"
        if self.api_calls > self.cache_hits:
            return "api"
        return "mixed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "cache_hits": self.cache_hits,
            "api_calls": self.api_calls,
            "stale_fallbacks": self.stale_fallbacks,
            "total_time_ms": self.total_time_ms,
            "average_time_per_item_ms": self.average_time_per_item_ms,
            "concurrency_used": self.concurrency_used,
            "waves": self.waves,
            "primary_source": self.primary_source,
        }


@dataclass(slots=True)
class RetrievalResult:
    """Aggregated outcome of retrieve_many, in request order."""
    resource_type: ResourceType
    items: list[BatchItem]
    metrics: RetrievalMetrics

    @property
    def retrieved(self) -> list[RetrievedItem]:
        return [i.result.unwrap() for i in self.items if i.is_ok]

    @property
    def results(self) -> list[JsonDict]:
        """Payloads of the successful ids."""
        return [r.payload for r in self.retrieved]

    @property
    def errors(self) -> list[ItemError]:
        return [i.result.unwrap_err() for i in self.items if i.is_err]

    @property
    def successful(self) -> int: return sum(1 for i in self.items if i.is_ok)

    @property
    def failed(self) -> int: return sum(1 for i in self.items if i.is_err)

    @property
    def is_complete(self) -> bool: return self.failed == 0

    @property
    def is_partial(self) -> bool: return 0 < self.failed < len(self.items)

    def __len__(self) -> int: return len(self.items)

    def __iter__(self) -> Iterator[BatchItem]: return iter(self.items)


def aggregate_failure(resource_type: ResourceType, ids: Sequence[int], errors: list[ItemError]) -> AggregateFailure:
    """Single error for a batch in which nothing succeeded."""
    if all(e.code is ErrorCode.NOT_FOUND for e in errors):
        ids_text = f"ID {ids[0]}" if len(ids) == 1 else f"IDs {', '.join(map(str, ids))}"
        return AggregateFailure(resource_type, errors, f"{resource_type} not found: {ids_text}", ErrorCode.NOT_FOUND)
    if all(e.code in (ErrorCode.PERMISSION_DENIED, ErrorCode.API_KEY_INVALID) for e in errors):
        return AggregateFailure(resource_type, errors,
                                f"Access denied: Insufficient permissions for {resource_type} to retrieve",
                                ErrorCode.PERMISSION_DENIED)
    # Mixed not-found and denied with nothing else falls back to the first error
    first = next((e for e in errors if e.code not in (ErrorCode.NOT_FOUND, ErrorCode.PERMISSION_DENIED,
                                                         ErrorCode.API_KEY_INVALID)), errors[0])
    return AggregateFailure(resource_type, errors, f"Failed to retrieve {resource_type}(s): {first.message}", first.code)


# ═══════════════════════════════════════════════════════════════════════════════
# Retriever
# ═══════════════════════════════════════════════════════════════════════════════


class BatchRetriever:
    """Drives a ResourceStore's fetchers over many ids in bounded waves.

    Example:
        >>> retriever = BatchRetriever(store, BatchConfig())
        >>> result = await retriever.retrieve_many(ResourceType.CARD, [1, 2, 3])
        >>> result.successful, result.metrics.primary_source
        (3, 'api')
    """

    __slots__ = ("_store", "_config")

    def __init__(self, store: ResourceStore, config: BatchConfig | None = None) -> None:
        self._store = store
        self._config = config or DEFAULT_BATCH_CONFIG

    @property
    def config(self) -> BatchConfig:
        return self._config

    async def retrieve_many(
        self,
        resource_type: ResourceType | str,
        ids: Sequence[int],
        *,
        now: float | None = None,
    ) -> RetrievalResult:
        """Fetch every id, returning results and per-id errors in request order.

        Raises:
            RequestValidationError: Malformed request, before any fetch
            AggregateFailure: Every id failed
        """
        rt, id_list = validate_ids(resource_type, ids, self._config)
        fetcher = self._store.fetcher(rt)
        plan = plan_batches(id_list, self._config)
        log.debug("batch planned", resource=rt.value, ids=len(id_list), waves=plan.waves, chunk_size=plan.chunk_size)

        async def run_one(index: int, item_id: int) -> BatchItem:
            t0 = time.perf_counter()
            try:
                outcome = await fetcher.fetch_or_load(item_id, now)
            except Exception as e:
                result: Result[RetrievedItem, ItemError] = Err(ItemError.from_exception(item_id, e))
            else:
                result = Ok(RetrievedItem(item_id, outcome.value, outcome.provenance, outcome.latency_ms))
            return BatchItem(index, item_id, result, (time.perf_counter() - t0) * 1000)

        start = time.perf_counter()
        items: list[BatchItem] = []
        offset = 0
        for wave in plan.chunks:
            items.extend(await asyncio.gather(*(run_one(offset + j, i) for j, i in enumerate(wave))))
            offset += len(wave)
        items.sort(key=lambda i: i.index)
        total_ms = round((time.perf_counter() - start) * 1000, 2)

        # SHARED and STALE_FALLBACK made no upstream call of their own
        provenances = [i.result.unwrap().provenance for i in items if i.is_ok]
        stale = sum(1 for p in provenances if p is Provenance.STALE_FALLBACK)
        api_calls = sum(1 for p in provenances if p is Provenance.FRESH)
        metrics = RetrievalMetrics(
            cache_hits=len(provenances) - api_calls,
            api_calls=api_calls,
            stale_fallbacks=stale,
            total_time_ms=total_ms,
            average_time_per_item_ms=round(total_ms / len(id_list)),
            concurrency_used=plan.concurrency,
            waves=plan.waves,
        )
        result = RetrievalResult(rt, items, metrics)

        failed = result.failed
        if failed == len(id_list):
            log.warning("every id failed", resource=rt.value, ids=id_list)
            raise aggregate_failure(rt, id_list, result.errors)
        if failed / len(id_list) > 0.5:
            log.warning("high failure rate", resource=rt.value, failed=failed, requested=len(id_list),
                        errors=[{"id": e.id, "code": e.code.value} for e in result.errors])
        log.info("batch retrieved", resource=rt.value, requested=len(id_list), successful=result.successful,
                 failed=failed, cache_hits=metrics.cache_hits, api_calls=api_calls, duration_ms=total_ms)
        return result
