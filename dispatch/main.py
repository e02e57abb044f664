"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dispatch import __version__
from dispatch.config import get_settings
from dispatch.database import close_db
from dispatch.dependencies import get_redis, set_redis_client
from dispatch.exceptions import register_exception_handlers
from dispatch.logging_config import LoggingMiddleware, get_logger, metrics, setup_logging

settings = get_settings()

# Initialize structured logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    logger.info("application_starting", version=__version__, env=settings.app_env)

    # Redis carries the notification channels
    redis_client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    set_redis_client(redis_client)

    try:
        await redis_client.ping()  # type: ignore[misc]
        logger.info("redis_connected", url=settings.redis_url.split("@")[-1])
    except (RedisError, OSError) as e:
        logger.warning("redis_connection_failed", error=str(e))

    logger.info("application_started")
    yield

    logger.info("application_shutting_down")

    try:
        await get_redis().aclose()
        logger.info("redis_disconnected")
    except RuntimeError:
        pass
    set_redis_client(None)

    await close_db()
    logger.info("database_disconnected")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Import routers inside function to avoid circular imports
    from dispatch.routers.jobs import router as jobs_router
    from dispatch.routers.payments import router as payments_router
    from dispatch.routers.technicians import router as technicians_router

    app = FastAPI(
        title="Technician Dispatch",
        description="Matches service jobs to nearby technicians, resolves accepts and settles earnings",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Logging middleware (must be added first so it wraps all requests)
    app.add_middleware(LoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(jobs_router)
    app.include_router(technicians_router)
    app.include_router(payments_router)

    @app.get("/health", tags=["Health"])
    async def health_check() -> JSONResponse:
        """Health check endpoint with in-process counters."""
        checks = {
            "status": "healthy",
            "app": settings.app_name,
            "env": settings.app_env,
            "version": __version__,
        }

        try:
            await get_redis().ping()  # type: ignore[misc]
            checks["redis"] = "connected"
        except RuntimeError:
            checks["redis"] = "not initialized"
        except (RedisError, OSError):
            checks["redis"] = "disconnected"

        checks["metrics"] = metrics.get_all_metrics()
        return JSONResponse(content=checks)

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect root to API documentation."""
        from fastapi.responses import RedirectResponse

        return RedirectResponse(url="/docs")

    return app


app = create_app()
