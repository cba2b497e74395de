#!/usr/bin/env python3
"""
HOMEBASE API Server
====================

REST API for household task management with session security monitoring.

Usage:
    uvicorn homebase.api.server:app --reload

Endpoints:
    GET    /health                              - Basic health check
    GET    /health/deep                         - Deep health check (DB, Redis)
    GET    /metrics                             - Prometheus metrics
    POST   /api/v1/auth/sessions                - Open a session (login)
    DELETE /api/v1/auth/sessions/current        - Logout
    GET    /api/v1/auth/me                      - Current member
    POST   /api/v1/groups                       - Create household
    GET    /api/v1/groups/{id}/tasks            - List tasks
    GET    /api/v1/security/threats             - Threat sweep (system:admin)
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime

import redis.asyncio as redis
import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.background import BackgroundTask

from homebase.api.deps import ConsentRequiredError
from homebase.api.limits import limiter
from homebase.api.routes.auth import router as auth_router
from homebase.api.routes.groups import router as groups_router
from homebase.api.routes.security import router as security_router
from homebase.api.routes.tasks import router as tasks_router
from homebase.config import settings
from homebase.db.database import async_session, check_db_health, close_db, init_db
from homebase.logging_config import configure_logging
from homebase.monitoring.metrics import REQUEST_COUNT, REQUEST_DURATION
from homebase.security.risk import SecurityEventType, missing_table_entries
from homebase.services.audit import get_client_ip, get_user_agent
from homebase.services.security_monitor import EventContext, SecurityMonitor, get_monitoring_policy

logger = structlog.get_logger(__name__)

VERSION = "1.0.0"

# =============================================================================
# Sentry Error Tracking
# =============================================================================

if settings.sentry_dsn:
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


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    configure_logging()
    await init_db()
    logger.info("api_started", service="HOMEBASE", version=VERSION)

    gaps = missing_table_entries()
    if any(gaps.values()):
        logger.error("security_table_incomplete", **gaps)

    yield

    await close_db()
    logger.info("database_closed")


# =============================================================================
# FastAPI Application
# =============================================================================

API_TAGS = [
    {"name": "Health", "description": "Health check and status endpoints"},
    {"name": "Authentication", "description": "Sessions and the current member"},
    {"name": "Groups", "description": "Households, members and invitations"},
    {"name": "Tasks", "description": "Household task management"},
    {"name": "Security", "description": "Threat detection and incident response"},
    {"name": "Monitoring", "description": "Prometheus metrics and observability"},
]

app = FastAPI(
    title="HOMEBASE",
    description="Household task management API",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=API_TAGS,
)

# Add rate limiting
app.state.limiter = limiter


async def record_rate_limit_event(path: str, limit: str, ip_address, user_agent) -> None:
    """Best-effort security event for a rate limit violation."""
    try:
        async with async_session() as db:
            await SecurityMonitor(db, get_monitoring_policy()).process_event(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                {"path": path, "limit": limit},
                EventContext(ip_address=ip_address, user_agent=user_agent),
            )
    except Exception as e:
        logger.error("rate_limit_event_failed", error=str(e))


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Answer 429; the security event is recorded after the response is sent."""
    detail = str(getattr(exc, "detail", exc))
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": detail},
        background=BackgroundTask(
            record_rate_limit_event,
            request.url.path,
            detail,
            get_client_ip(request),
            get_user_agent(request),
        ),
    )

app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Group-ID", "X-Device-ID", "X-Offline-Token", "X-Request-ID"],
)


# =============================================================================
# Metrics Middleware
# =============================================================================

@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Track request metrics."""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    route = request.scope.get("route")
    endpoint = route.path if route is not None else request.url.path

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status_code=response.status_code
    ).inc()

    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    return response


# =============================================================================
# Health Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health():
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "HOMEBASE",
        "version": VERSION,
    }


@app.get("/health/deep", tags=["Health"])
async def health_deep():
    """
    Deep health check - verifies database and Redis connections.
    Returns 503 if any check fails.
    """
    checks = {}
    overall_status = "healthy"

    db_health = await check_db_health()
    if db_health.get("connected"):
        checks["database"] = {"status": "healthy", **db_health}
    else:
        checks["database"] = {"status": "unhealthy", **db_health}
        overall_status = "degraded"

    if settings.redis_url:
        try:
            r = redis.from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            checks["redis"] = {"status": "unhealthy", "error": str(e)}
            overall_status = "degraded"
    else:
        checks["redis"] = {"status": "not_configured", "note": "Using in-memory rate limiting"}

    return JSONResponse(
        status_code=200 if overall_status == "healthy" else 503,
        content={
            "status": overall_status,
            "service": "HOMEBASE",
            "version": VERSION,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(auth_router, prefix="/api/v1")
app.include_router(groups_router, prefix="/api/v1")
app.include_router(tasks_router, prefix="/api/v1")
app.include_router(security_router, prefix="/api/v1")


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(ConsentRequiredError)
async def consent_required_handler(request: Request, exc: ConsentRequiredError):
    return JSONResponse(
        status_code=451,
        content={"error": "Data processing consent required", "code": "CONSENT_REQUIRED"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_error",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    if settings.sentry_dsn:
        sentry_sdk.capture_exception(exc)

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "homebase.api.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
