from __future__ import annotations

"""Prometheus metrics for the chat core.

Adds an HTTP middleware that records request latency per method/path/status,
plus generation and streaming counters updated by the response synchronizer.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "physarum_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

GENERATION_LATENCY = Histogram(
    "physarum_generation_latency_seconds",
    "Remote generation call latency in seconds",
    labelnames=("mode",),
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

GENERATION_FAILURES = Counter(
    "physarum_generation_failures_total",
    "Remote generation calls that ended in an error",
    labelnames=("mode",),
)

STREAM_CHUNKS = Counter(
    "physarum_stream_chunks_total",
    "Chunk update events emitted while replaying responses",
)


def sanitize_path(path: str) -> str:
    """Reduce paths to their top-level segment to keep label cardinality low."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
