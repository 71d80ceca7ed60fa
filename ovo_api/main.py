"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from ovo_api.config import configure_structlog, get_settings
from ovo_api.core.background import get_task_supervisor
from ovo_api.db.redis import close_redis_client
from ovo_api.db.session import dispose_engine
from ovo_api.error_handlers import register_exception_handlers
from ovo_api.middleware import (
    CorrelationIdMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from ovo_api.routers import apikeys, auth, health, oauth, user

logger = structlog.get_logger(__name__)

_SHUTDOWN_DRAIN_SECONDS = 5.0


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Drain detached work and release pooled connections on shutdown."""
    logger.info("application_started")
    yield
    await get_task_supervisor().drain(timeout_seconds=_SHUTDOWN_DRAIN_SECONDS)
    await dispose_engine()
    await close_redis_client()
    logger.info("application_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials="*" not in settings.app.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )
    register_exception_handlers(app, environment=settings.app.environment)

    prefix = settings.app.api_prefix
    app.include_router(auth.router, prefix=prefix)
    app.include_router(oauth.router, prefix=prefix)
    app.include_router(apikeys.router, prefix=prefix)
    app.include_router(user.router, prefix=prefix)
    app.include_router(health.router)
    return app


app = create_app()
