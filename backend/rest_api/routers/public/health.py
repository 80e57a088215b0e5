"""
Health check endpoints for the REST API.
Provides basic and detailed health status of the service and its dependencies.
"""

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shared.config.settings import settings
from shared.infrastructure.db import SessionLocal, engine
from shared.infrastructure.events import get_redis_pool
from shared.utils.health import (
    HealthStatus,
    health_check_with_timeout,
    aggregate_health_checks,
)


router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health_check():
    """
    Basic health check endpoint.
    Returns service status without checking dependencies.
    """
    return {
        "status": "healthy",
        "service": "order-assignment",
        "environment": settings.environment,
    }


def _ping_database() -> None:
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))


@health_check_with_timeout(timeout=3.0, component="database")
async def check_database_health() -> dict:
    """Check database connectivity."""
    await asyncio.to_thread(_ping_database)
    return {"type": engine.dialect.name}


@health_check_with_timeout(timeout=3.0, component="redis")
async def check_redis_health() -> dict:
    """Check Redis connectivity through the shared async pool."""
    redis = await get_redis_pool()
    await redis.ping()
    return {"type": "redis"}


@router.get("/health/detailed")
async def detailed_health_check(request: Request):
    """
    Detailed health check that verifies connectivity to dependencies.

    Returns 503 Service Unavailable if any dependency is down.
    """
    health_results = await aggregate_health_checks([
        check_database_health(),
        check_redis_health(),
    ])

    checks = {
        "service": "order-assignment",
        "environment": settings.environment,
        "status": health_results["status"],
        "dependencies": health_results["components"],
    }

    publisher = getattr(request.app.state, "publisher", None)
    if publisher is not None:
        checks["event_publisher"] = {
            "published": publisher.published_count,
            "failed": publisher.failed_count,
            "circuit_breaker": publisher.breaker.get_stats(),
        }

    monitor = getattr(request.app.state, "monitoring_loop", None)
    checks["monitoring"] = {"is_running": bool(monitor and monitor.is_running)}

    if checks["status"] != HealthStatus.HEALTHY.value:
        return JSONResponse(content=checks, status_code=503)

    return checks
