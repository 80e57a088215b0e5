"""
Application lifespan handler.
Manages startup and shutdown events for the FastAPI application.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from shared.infrastructure.db import engine, get_db_context
from shared.config.settings import settings
from shared.config.logging import setup_logging, rest_api_logger as logger
from shared.infrastructure.events import (
    EventPublisher,
    close_redis_pool,
    close_redis_sync_client,
    get_redis_sync_client,
)
from rest_api.models import Base
from rest_api.services.assignment import AssignmentEngine
from rest_api.services.assignment.monitoring import start_monitoring_loop, stop_monitoring_loop


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    # Initialize logging
    setup_logging()

    # Validate production secrets before startup
    secret_errors = settings.validate_production_secrets()
    if secret_errors:
        for error in secret_errors:
            logger.error("Configuration error", error=error)
        if settings.environment == "production":
            raise RuntimeError(
                f"Production configuration errors: {'; '.join(secret_errors)}. "
                "Server will not start with insecure configuration."
            )
        else:
            logger.warning(
                "Running with insecure defaults (acceptable for development only)"
            )

    # Startup
    logger.info("Starting assignment API", port=settings.rest_api_port, env=settings.environment)

    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    publisher = EventPublisher(get_redis_sync_client())
    app.state.publisher = publisher

    # Repair load counters and queue before anything can assign
    try:
        with get_db_context() as db:
            AssignmentEngine(db, publisher).reconcile()
    except Exception as e:
        logger.warning("Startup reconciliation failed", error=str(e))

    if settings.assignment_monitor_enabled:
        app.state.monitoring_loop = await start_monitoring_loop(publisher)
    else:
        logger.info("Monitoring loop disabled by configuration")

    yield

    # Shutdown
    logger.info("Shutting down assignment API")

    await stop_monitoring_loop()

    # Close Redis connection pools on shutdown
    close_redis_sync_client()
    await close_redis_pool()
    logger.info("Redis connection pools closed")
