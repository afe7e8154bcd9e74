"""
FastAPI Application Entry Point.

School bus trip lifecycle and parent notification backend.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from schoolbus.app.core.config import settings
from schoolbus.app.core.observability import ObservabilityMiddleware, configure_logging
from schoolbus.app.core.redis_client import get_redis, ping_redis
from schoolbus.app.api.v1.router import router as api_v1_router
from schoolbus.app.db.session import engine, Base
from schoolbus.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from schoolbus.app.models.user import User  # noqa: F401
from schoolbus.app.models.route import Route  # noqa: F401
from schoolbus.app.models.bus import Bus  # noqa: F401
from schoolbus.app.models.child import Child  # noqa: F401
from schoolbus.app.models.trip import Trip  # noqa: F401
from schoolbus.app.models.check_in import CheckIn  # noqa: F401
from schoolbus.app.models.notification import Notification  # noqa: F401
from schoolbus.app.models.dlq import DeadLetterQueue  # noqa: F401

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Trip lifecycle and parent notification engine for school buses",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(redis=Depends(get_redis)):
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis(redis) else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the School Bus Trip Engine API",
        "docs": "/docs",
        "health": "/health",
    }
