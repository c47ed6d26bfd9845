"""Explicit wiring of the services one application instance uses."""

from __future__ import annotations

from dataclasses import dataclass

from redis import asyncio as redis_async
from redis.asyncio.client import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from iam_core.config import Settings
from iam_core.core.rate_limit import (
    InMemorySlidingWindowStore,
    RateLimitSweeper,
    RedisSlidingWindowStore,
    SlidingWindowRateLimiter,
    SlidingWindowStore,
)
from iam_core.core.sessions import SessionManager
from iam_core.core.tokens import TokenService
from iam_core.db.session import build_engine, build_session_factory
from iam_core.middleware.metrics import MetricsRegistry
from iam_core.services.audit_service import AuditService
from iam_core.services.auth_service import AuthService
from iam_core.services.impersonation_service import ImpersonationService
from iam_core.services.permission_service import PermissionService
from iam_core.services.user_service import UserService


@dataclass
class ServiceContainer:
    """Per-application service graph; lives on ``app.state.container``."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    token_service: TokenService
    session_manager: SessionManager
    user_service: UserService
    audit_service: AuditService
    auth_service: AuthService
    permission_service: PermissionService
    impersonation_service: ImpersonationService
    global_rate_limiter: SlidingWindowRateLimiter
    auth_rate_limiter: SlidingWindowRateLimiter
    metrics: MetricsRegistry
    rate_limit_sweeper: RateLimitSweeper | None = None
    redis_client: Redis | None = None

    async def aclose(self) -> None:
        """Stop background work and release pooled connections."""
        if self.rate_limit_sweeper is not None:
            await self.rate_limit_sweeper.stop()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.engine.dispose()


def build_container(settings: Settings) -> ServiceContainer:
    """Construct every service once from validated settings."""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)

    token_service = TokenService(
        access_secret=settings.jwt.access_secret.get_secret_value(),
        refresh_secret=settings.jwt.refresh_secret.get_secret_value(),
    )
    session_manager = SessionManager()
    user_service = UserService()
    audit_service = AuditService(session_factory)

    redis_client: Redis | None = None
    sweeper: RateLimitSweeper | None = None
    store: SlidingWindowStore
    if settings.rate_limit.backend == "redis":
        if settings.redis.url is None:
            raise ValueError("rate_limit.backend 'redis' requires redis.url.")
        redis_client = redis_async.from_url(settings.redis.url, decode_responses=True)
        store = RedisSlidingWindowStore(redis_client)
    else:
        memory_store = InMemorySlidingWindowStore()
        sweeper = RateLimitSweeper(
            memory_store,
            interval_seconds=settings.rate_limit.sweep_interval_seconds,
            max_window_ms=settings.rate_limit.max_window_seconds * 1000,
        )
        store = memory_store

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        token_service=token_service,
        session_manager=session_manager,
        user_service=user_service,
        audit_service=audit_service,
        auth_service=AuthService(token_service, session_manager, user_service, audit_service),
        permission_service=PermissionService(),
        impersonation_service=ImpersonationService(
            token_service,
            session_manager,
            user_service,
            audit_service,
            settings.impersonation,
        ),
        global_rate_limiter=SlidingWindowRateLimiter(
            "global",
            settings.rate_limit.global_max_requests,
            settings.rate_limit.global_window_seconds * 1000,
            store,
        ),
        auth_rate_limiter=SlidingWindowRateLimiter(
            "auth",
            settings.rate_limit.auth_max_requests,
            settings.rate_limit.auth_window_seconds * 1000,
            store,
        ),
        metrics=MetricsRegistry(),
        rate_limit_sweeper=sweeper,
        redis_client=redis_client,
    )
