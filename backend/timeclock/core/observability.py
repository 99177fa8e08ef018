"""
Prometheus instrumentation for the Time Clock API.

This module sets up:
- Request/exception counters and latency histogram
- Time clock transition, capture outcome and active session metrics
- Prometheus metrics endpoint
"""

from __future__ import annotations

import re
import time

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Prometheus metrics
http_requests_total = Counter(
    "http_server_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"]
)

http_request_duration_seconds = Histogram(
    "http_server_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

http_exceptions_total = Counter(
    "http_server_exceptions_total",
    "Total unhandled exceptions",
    ["method", "path", "exception_type"]
)

timeclock_transitions_total = Counter(
    "timeclock_transitions_total",
    "Time clock transitions by outcome",
    ["transition", "outcome"]
)

timeclock_capture_outcomes_total = Counter(
    "timeclock_capture_outcomes_total",
    "Capture handshake outcomes",
    ["outcome"]
)

timeclock_active_sessions = Gauge(
    "timeclock_active_sessions",
    "Number of currently active work sessions"
)


def record_transition(transition: str, outcome: str) -> None:
    timeclock_transitions_total.labels(transition=transition, outcome=outcome).inc()


def record_capture_outcome(outcome: str) -> None:
    timeclock_capture_outcomes_total.labels(outcome=outcome).inc()


def update_active_sessions(count: int) -> None:
    timeclock_active_sessions.set(count)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for all requests."""

    async def dispatch(self, request: Request, call_next) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = self._normalize_path(request.url.path)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.perf_counter() - start_time
            http_exceptions_total.labels(
                method=method,
                path=path,
                exception_type=type(e).__name__
            ).inc()
            http_requests_total.labels(method=method, path=path, status=500).inc()
            http_request_duration_seconds.labels(method=method, path=path).observe(duration)
            raise

        duration = time.perf_counter() - start_time
        http_requests_total.labels(
            method=method,
            path=path,
            status=response.status_code
        ).inc()
        http_request_duration_seconds.labels(
            method=method,
            path=path
        ).observe(duration)
        return response

    def _normalize_path(self, path: str) -> str:
        """Replace numeric IDs in path with placeholder to reduce cardinality."""
        normalized = re.sub(r'/\d+', '/{id}', path)
        parts = normalized.split('/')[:6]
        return '/'.join(parts)


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint handler."""
    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
