"""
Prometheus metrics for the match sync engine.
Module-level collectors; label sets are kept small (query kind, outcome).
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Polling ─────────────────────────────────────────────────────────────
POLL_REQUESTS = Counter(
    "ms_poll_requests_total",
    "List endpoint fetches per query kind",
    ["query", "status"],
)
POLL_LATENCY = Histogram(
    "ms_poll_latency_seconds",
    "List endpoint fetch latency in seconds",
    ["query"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)
TRACKED_MATCHES = Gauge(
    "ms_tracked_matches",
    "Matches currently held per query kind",
    ["query"],
)
REGRESSION_PRESERVED = Counter(
    "ms_regression_preserved_total",
    "Fresh values rejected in favour of richer cached values",
    ["reason"],
)

# ── Hydration ───────────────────────────────────────────────────────────
HYDRATIONS = Counter(
    "ms_hydrations_total",
    "Per-match detail fetches",
    ["status"],
)
HYDRATION_COALESCED = Counter(
    "ms_hydration_coalesced_total",
    "Hydrate calls that joined an in-flight request",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
