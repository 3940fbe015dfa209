"""
Prometheus metrics middleware.

Collects HTTP request metrics (counter + histogram) and exposes
application-level metrics for the push channel and the permission matrix.
"""

import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

# ── HTTP metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Push channel metrics ─────────────────────────────────────────────────────

websocket_connections = Gauge(
    "websocket_connections",
    "Live notification WebSocket connections in this process",
)

notifications_pushed_total = Counter(
    "notifications_pushed_total",
    "Messages delivered over notification WebSockets",
    ["type"],
)

# ── Permission metrics ───────────────────────────────────────────────────────

permission_changes_total = Counter(
    "permission_changes_total",
    "Grant rows written or reset",
    ["role", "change"],
)


def _normalize_path(path: str) -> str:
    """Collapse path parameters to reduce cardinality.

    e.g. /api/user-notifications/5f0c…/read → /api/user-notifications/{id}/read
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 1 and (part.isdigit() or len(part) > 20 or part.count("-") >= 4):
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        http_requests_total.labels(
            method=method,
            path=path,
            status_code=response.status_code,
        ).inc()
        http_request_duration_seconds.labels(method=method, path=path).observe(duration)

        return response
