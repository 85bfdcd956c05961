"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

CHUNKS_SYNTHESIZED = Counter(
    "docg_chunks_synthesized_total",
    "Chunks that finished synthesis, by final status",
    labelnames=("status",),
    registry=REGISTRY,
)

SYNTHESIS_ATTEMPTS = Counter(
    "docg_synthesis_attempts_total",
    "LLM attempts made during chunk synthesis",
    labelnames=("model", "outcome"),
    registry=REGISTRY,
)

FALLBACKS = Counter(
    "docg_fallback_attempts_total",
    "Chunks that escalated to the fallback model",
    registry=REGISTRY,
)

BUDGET_DECISIONS = Counter(
    "docg_budget_decisions_total",
    "Budget admission decisions",
    labelnames=("decision", "reason"),
    registry=REGISTRY,
)

SPEND_USD = Counter(
    "docg_spend_usd_total",
    "Recorded AI spend in USD",
    labelnames=("operation", "model"),
    registry=REGISTRY,
)

COST_ALERTS = Counter(
    "docg_cost_alerts_total",
    "Threshold warnings emitted",
    labelnames=("type",),
    registry=REGISTRY,
)

GENERATION_DURATION = Histogram(
    "docg_generation_duration_seconds",
    "Wall-clock duration of graph generation runs",
    labelnames=("status",),
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "CHUNKS_SYNTHESIZED",
    "SYNTHESIS_ATTEMPTS",
    "FALLBACKS",
    "BUDGET_DECISIONS",
    "SPEND_USD",
    "COST_ALERTS",
    "GENERATION_DURATION",
    "metrics_response",
]
