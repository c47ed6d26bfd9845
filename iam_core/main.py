"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from iam_core.config import Settings, configure_structlog, get_settings
from iam_core.container import build_container
from iam_core.error_handlers import register_exception_handlers
from iam_core.middleware.correlation_id import CorrelationIdMiddleware
from iam_core.middleware.logging import LoggingMiddleware
from iam_core.middleware.metrics import MetricsMiddleware, metrics_endpoint
from iam_core.middleware.rate_limit import RateLimitMiddleware
from iam_core.routers import auth, health, impersonation, permissions, sessions

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own background tasks and pooled connections for the app's lifetime."""
    container = app.state.container
    if container.rate_limit_sweeper is not None:
        container.rate_limit_sweeper.start()
    logger.info("application_started", rate_limit_backend=container.settings.rate_limit.backend)
    try:
        yield
    finally:
        await container.aclose()
        logger.info("application_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    app.state.container = build_container(settings)
    register_exception_handlers(app, settings.app.environment)

    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], include_in_schema=False)
    app.include_router(auth.router)
    app.include_router(sessions.router)
    app.include_router(impersonation.router)
    app.include_router(permissions.router)
    app.include_router(health.router)
    return app
