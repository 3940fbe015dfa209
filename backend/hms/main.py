import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from hms.config import settings
from hms.database import engine
from hms.middleware.logging_config import configure_logging
from hms.services.notification_hub import NotificationHub

configure_logging(settings.log_level, json_logs=settings.json_logs)

from hms.api.auth import router as auth_router  # noqa: E402
from hms.api.permissions import router as permissions_router  # noqa: E402
from hms.api.notifications import router as notifications_router  # noqa: E402
from hms.api.realtime import router as realtime_router  # noqa: E402

logger = logging.getLogger("hms")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection, join the notification fan-out
    async with engine.begin() as conn:
        await conn.execute(sqlalchemy.text("SELECT 1"))
    await app.state.hub.start()
    yield
    # Shutdown
    await app.state.hub.stop()
    await engine.dispose()


app = FastAPI(
    title="HMS Permissions & Notifications",
    description="Role/module/action permission matrix and real-time user notifications",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.hub = NotificationHub(settings.redis_url)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

# ── Request context middleware (request ID + timing) ─────────────────────────
from hms.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from hms.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors; only development responses carry the detail."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(permissions_router)
app.include_router(notifications_router)
app.include_router(realtime_router)


@app.get("/metrics")
async def prometheus_metrics():
    """Expose Prometheus metrics in text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check():
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(sqlalchemy.text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    if settings.redis_url:
        try:
            r = aioredis.from_url(settings.redis_url, decode_responses=True)
            await r.ping()
            await r.aclose()
            components["redis"] = {"status": "connected"}
        except Exception as exc:
            components["redis"] = {"status": "disconnected", "error": str(exc)}
    else:
        components["redis"] = {"status": "disabled"}

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] != "disconnected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
        "websocket_connections": app.state.hub.connection_count(),
    }

    _health_cache = result
    _health_cache_ts = now
    return result
