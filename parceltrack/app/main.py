"""
FastAPI Application Entry Point.

This is the main application file for the Parcel Tracking Service.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from parceltrack.app.core.config import settings
from parceltrack.app.api.v1.router import router as api_v1_router
from parceltrack.app.core.observability import ObservabilityMiddleware, configure_logging
from parceltrack.app.core.redis_client import create_redis_client, ping_redis
from parceltrack.app.db.session import engine, Base, AsyncSessionLocal
from parceltrack.app.services.tracking import build_tracking_services
from parceltrack.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from parceltrack.app.models.user import User  # noqa: F401
from parceltrack.app.models.parcel import Parcel  # noqa: F401
from parceltrack.app.models.tracking_point import TrackingPoint  # noqa: F401

logger = logging.getLogger("parceltrack")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Wires the lifecycle manager and channel broker.
    3. Starts the Redis event relay when configured, stops it on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis_client = create_redis_client() if settings.realtime_backend == "redis" else None
    tracking = build_tracking_services(AsyncSessionLocal, settings.realtime_backend, redis_client)
    app.state.tracking = tracking
    app.state.redis = redis_client

    relay_task = asyncio.create_task(tracking.relay.run()) if tracking.relay else None
    yield

    if relay_task:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Event relay stopped with an error")
    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel lifecycle and real-time tracking service",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "realtime_backend": settings.realtime_backend,
    }

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        health["redis"] = "up" if await ping_redis(redis_client) else "down"

    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Parcel Tracking Service API",
        "docs": "/docs",
        "health": "/health",
    }
