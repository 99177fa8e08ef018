from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from timeclock.core.deps import get_timeclock_service
from timeclock.core.errors import TimeClockError, timeclock_error_handler
from timeclock.core.logging import RequestLoggingMiddleware, configure_logging
from timeclock.core.observability import PrometheusMiddleware, metrics_endpoint
from timeclock.core.settings import settings
from timeclock.db.session import engine
from timeclock.routers.registry import include_all_routers
from timeclock.services.timeclock import TimeClockService

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version=settings.project_version)

# Always allow localhost during development (Vite often changes ports).
allow_origin_regex = None
if settings.environment != "production":
    allow_origin_regex = r"^http://(localhost|127\.0\.0\.1)(:\d+)?$"
elif any(origin.strip() == "*" for origin in settings.allow_origins):
    raise RuntimeError("ALLOW_ORIGINS cannot include '*' in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Idempotency-Key", "X-Request-Id", "Accept"],
)

# Observability middleware
app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(TimeClockError, timeclock_error_handler)

# Prometheus metrics endpoint
app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["observability"], include_in_schema=False)

include_all_routers(app)


@app.get("/healthz", tags=["health"])
def healthcheck(service: TimeClockService = Depends(get_timeclock_service)) -> dict[str, str | int]:
    """Health check with DB status and the number of open sessions."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        active = len(service.list_active_sessions())
    except Exception as exc:  # pragma: no cover - runtime health check
        logger.error(f"Healthcheck failed: {exc}", exc_info=True)
        raise HTTPException(status_code=503, detail="Service unavailable") from exc
    return {"status": "ok", "database": "ok", "active_sessions": active}


@app.get("/version", tags=["health"])
def version() -> dict[str, str]:
    return {
        "version": settings.project_version,
        "environment": settings.environment,
        "capture_gate": settings.capture_gate if settings.capture_required else "null",
    }


@app.on_event("shutdown")
def shutdown_event() -> None:
    get_timeclock_service().coordinator.shutdown()
