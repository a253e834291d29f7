"""
FastAPI Application Entry Point.

This is the main application file for the NEMT Dispatch Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.db.session import engine, Base, AsyncSessionLocal
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.services.change_feed import ChangeFeed, create_redis_client
from backend.app.services.scheduler_runtime import build_scheduling_loop

# Import models to ensure they are registered with Base
from backend.app.models.profile import Profile
from backend.app.models.patient import Patient
from backend.app.models.trip import Trip
from backend.app.models.notification import Notification
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Builds the scheduling loop and starts its background timers.
    3. Stops the loop and closes Redis on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    redis_client = create_redis_client()
    change_feed = ChangeFeed(redis_client, retry_interval=settings.state_refresh_interval_seconds)
    scheduling_loop = build_scheduling_loop(AsyncSessionLocal, change_feed=change_feed)
    app.state.change_feed = change_feed
    app.state.scheduling_loop = scheduling_loop

    if settings.scheduler_background_enabled:
        await scheduling_loop.start()
    else:
        logger.info("Background scheduling disabled")

    yield

    await scheduling_loop.stop()
    await redis_client.aclose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Automatic driver assignment for non-emergency medical transport",
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
        dict: Status, application information and change-feed reachability
    """
    change_feed = getattr(request.app.state, "change_feed", None)
    redis_ok = await change_feed.ping() if change_feed is not None else False
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "connected" if redis_ok else "unavailable",
    }


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
        "message": "Welcome to NEMT Dispatch Backend API",
        "docs": "/docs",
        "health": "/health",
    }
