"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INGEST_JOBS = Counter(
    "ctxcoach_ingest_jobs_total",
    "Finished ingestion jobs",
    labelnames=("source", "status"),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "ctxcoach_ingest_duration_seconds",
    "Ingestion job duration",
    labelnames=("source",),
    registry=REGISTRY,
)

CACHE_SIZE = Gauge(
    "ctxcoach_cache_chunks",
    "Number of chunks held by the embedding cache",
    registry=REGISTRY,
)

CACHE_REFRESH_FAILURES = Counter(
    "ctxcoach_cache_refresh_failures_total",
    "Embedding cache refreshes that raised",
    registry=REGISTRY,
)

CHAT_TURNS = Counter(
    "ctxcoach_chat_turns_total",
    "Chat turns by outcome",
    labelnames=("outcome", "new_session"),
    registry=REGISTRY,
)

CHAT_TOKENS = Counter(
    "ctxcoach_chat_tokens_total",
    "Model tokens reported by the chat provider",
    labelnames=("direction",),
    registry=REGISTRY,
)

MEMORY_EXTRACTIONS = Counter(
    "ctxcoach_memory_extractions_total",
    "Per-profile memory extraction runs",
    labelnames=("status",),
    registry=REGISTRY,
)

MEMORIES_CREATED = Counter(
    "ctxcoach_memories_created_total",
    "Memories created by extraction",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "INGEST_JOBS",
    "INGEST_DURATION",
    "CACHE_SIZE",
    "CACHE_REFRESH_FAILURES",
    "CHAT_TURNS",
    "CHAT_TOKENS",
    "MEMORY_EXTRACTIONS",
    "MEMORIES_CREATED",
    "metrics_response",
]
