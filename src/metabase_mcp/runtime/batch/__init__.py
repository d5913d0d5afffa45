"""Bounded-concurrency batch retrieval."""

from .batch import (
    DEFAULT_BATCH_CONFIG,
    BatchConfig,
    BatchItem,
    BatchPlan,
    BatchRetriever,
    RetrievalMetrics,
    RetrievalResult,
    RetrievedItem,
    aggregate_failure,
    chunk_size_for,
    plan_batches,
    validate_ids,
)

__all__ = [
    "BatchConfig", "DEFAULT_BATCH_CONFIG", "BatchPlan", "chunk_size_for", "plan_batches", "validate_ids",
    "RetrievedItem", "BatchItem", "RetrievalMetrics", "RetrievalResult", "aggregate_failure",
    "BatchRetriever",
]
