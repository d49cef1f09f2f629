"""Prometheus metrics for monitoring and observability."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from functools import lru_cache

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# ==============================================================================
# APPLICATION INFO
# ==============================================================================

app_info = Info("cavens_assistant", "Cavens assistant API information")
app_info.info({"version": "0.1.0", "service": "cavens-assistant-api"})

# ==============================================================================
# HTTP METRICS
# ==============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)

# ==============================================================================
# CHAT ENGINE METRICS
# ==============================================================================

chat_intents_total = Counter(
    "chat_intents_total",
    "Resolved intents by type and source (model or keyword fallback)",
    ["intent", "source"],
)

chat_query_tier_total = Counter(
    "chat_query_tier_total",
    "Query tier that produced the final result set",
    ["tier"],
)

chat_distance_lookups_total = Counter(
    "chat_distance_lookups_total",
    "Distance lookups by resolution method",
    ["method"],
)

chat_stream_sessions = Gauge(
    "chat_stream_sessions",
    "Streaming chat sessions currently open",
)

chat_terminal_events_total = Counter(
    "chat_terminal_events_total",
    "Terminal events emitted per chat session",
    ["type"],
)

llm_requests_total = Counter(
    "llm_requests_total",
    "Language model requests by purpose and outcome",
    ["purpose", "outcome"],
)

chat_pipeline_duration_seconds = Histogram(
    "chat_pipeline_duration_seconds",
    "Time from message receipt to composed response",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0),
)


@lru_cache(maxsize=2048)
def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path to reduce cardinality.

    Examples:
        /v1/clubs/65f1c0ffee0123456789abcd -> /v1/clubs/{id}
        /v1/events/42 -> /v1/events/{id}
    """
    path = re.sub(r"/[0-9a-f]{24}(?=/|$)", "/{id}", path, flags=re.IGNORECASE)
    path = re.sub(r"/\d+", "/{id}", path)
    path = re.sub(r"/[a-zA-Z0-9_-]{20,}", "/{id}", path)
    return path


# ==============================================================================
# PROMETHEUS MIDDLEWARE
# ==============================================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = normalize_endpoint(request.url.path)
        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
        finally:
            # streaming bodies finish later; this measures time to first byte
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.time() - start_time
            )
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()
        return response


def get_metrics() -> Response:
    """Generate Prometheus metrics response."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "PrometheusMiddleware",
    "get_metrics",
    "http_requests_total",
    "http_request_duration_seconds",
    "chat_intents_total",
    "chat_query_tier_total",
    "chat_distance_lookups_total",
    "chat_stream_sessions",
    "chat_terminal_events_total",
    "llm_requests_total",
    "chat_pipeline_duration_seconds",
    "normalize_endpoint",
]
