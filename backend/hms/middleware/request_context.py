"""
Request context middleware.

Generates or propagates X-Request-ID, keeps it in a ContextVar for the
duration of the request and writes one access log line per request with
the authenticated caller (``role:user_id``) when there is one. The caller
is placed on ``request.state.actor`` by the auth dependency.
"""

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# polled by monitoring; logged at DEBUG only
QUIET_PATHS = {"/metrics", "/api/health"}


def get_request_id() -> str:
    return _request_id_var.get()


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        token = _request_id_var.set(request_id)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id

        actor = getattr(request.state, "actor", None)
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "%s %s -> %s in %.0fms (%s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            actor or "anonymous",
            extra={"duration_ms": elapsed_ms, "request_id": request_id, "actor": actor},
        )
        return response
