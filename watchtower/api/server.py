#!/usr/bin/env python3
"""
WATCHTOWER API Server
=====================

Breach monitoring sweeps and external workflow reconciliation.

Usage:
    uvicorn watchtower.api.server:app --reload

Endpoints:
    GET    /health                                   - Basic health check
    GET    /health/deep                              - Deep health check (DB, polling)
    GET    /metrics                                  - Prometheus metrics
    POST   /api/v1/breach-monitoring/check           - Run a sweep (internal secret)
    POST   /api/v1/breach-monitoring/subjects        - Monitor a subject
    GET    /api/v1/breach-monitoring/subjects        - List subjects
    GET    /api/v1/breach-monitoring/alerts          - List alerts
    POST   /api/v1/workflows                         - Dispatch a case
    POST   /api/v1/workflows/poll                    - Check a work order
    POST   /api/v1/investigations/{id}/polling       - Start or reconcile polling
    DELETE /api/v1/investigations/{id}/polling       - Stop polling
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from watchtower import __version__
from watchtower.api.routes.monitoring import router as monitoring_router
from watchtower.api.routes.workflows import router as workflows_router
from watchtower.config import settings
from watchtower.db.database import check_db_health, close_db, init_db
from watchtower.logging_config import configure_logging
from watchtower.services.poller import get_polling_supervisor, shutdown_polling_supervisor
from watchtower.services.scheduler import start_sweep_scheduler, stop_sweep_scheduler

logger = structlog.get_logger(__name__)

# =============================================================================
# Prometheus Metrics
# =============================================================================

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"]
)
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"]
)


def init_sentry() -> bool:
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
    )
    logger.info("sentry_initialized", dsn=settings.sentry_dsn[:20] + "...")
    return True


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    configure_logging()
    init_sentry()

    await init_db()
    logger.info("api_started", service="Watchtower", version=__version__)

    if settings.scheduler_enabled:
        try:
            await start_sweep_scheduler()
        except ValueError as e:
            logger.error("sweep_scheduler_failed_to_start", error=str(e))

    yield

    await stop_sweep_scheduler()
    await shutdown_polling_supervisor()
    await close_db()
    logger.info("database_closed")


# =============================================================================
# FastAPI Application
# =============================================================================

API_TAGS = [
    {"name": "Health", "description": "Health check and status endpoints"},
    {"name": "breach-monitoring", "description": "Monitored subjects, sweeps and alerts"},
    {"name": "workflows", "description": "External workflow dispatch and polling"},
    {"name": "Monitoring", "description": "Prometheus metrics"},
]

app = FastAPI(
    title="Watchtower",
    description="Breach monitoring and external workflow reconciliation.",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=API_TAGS,
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status_code=response.status_code,
    ).inc()
    REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
        time.perf_counter() - start
    )
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(monitoring_router)
app.include_router(workflows_router)


# =============================================================================
# Health & Metrics
# =============================================================================

@app.get("/health", tags=["Health"])
async def health():
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health/deep", tags=["Health"])
async def deep_health():
    """Check the database and report polling activity."""
    db = await check_db_health()
    status_code = 200 if db.get("connected") else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "healthy" if status_code == 200 else "unhealthy",
            "database": db,
            "active_poll_tasks": get_polling_supervisor().active_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@app.get("/metrics", tags=["Monitoring"], response_class=PlainTextResponse)
async def metrics():
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
