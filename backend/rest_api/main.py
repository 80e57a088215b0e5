"""
REST API main application.
Entry point for the FastAPI order assignment server.
"""

from fastapi import FastAPI

from rest_api.core.cors import configure_cors
from rest_api.core.errors import register_exception_handlers
from rest_api.core.lifespan import lifespan
from rest_api.core.middlewares import register_middlewares
from rest_api.routers.assignment import router as assignment_router
from rest_api.routers.public import health_router
from shared.config.settings import settings
from shared.security.rate_limit import limiter


# Create FastAPI application
app = FastAPI(
    title="Order Assignment API",
    description="Waiter assignment for restaurant orders: round-robin and load balancing, queueing, monitoring",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter

register_exception_handlers(app)
register_middlewares(app)
configure_cors(app)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(health_router)
app.include_router(assignment_router)


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rest_api.main:app",
        host="0.0.0.0",
        port=settings.rest_api_port,
        reload=True,
    )
