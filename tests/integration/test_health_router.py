"""Integration tests for health endpoints."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from iam_core.error_handlers import register_exception_handlers
from iam_core.routers.health import check_database_ready, check_redis_ready, router


def _build_health_app(database_ready: bool, redis_ready: bool) -> FastAPI:
    """Build app with health router and deterministic dependency overrides."""
    app = FastAPI()
    register_exception_handlers(app, environment="production")
    app.include_router(router)

    async def _database_override() -> bool:
        return database_ready

    async def _redis_override() -> bool:
        return redis_ready

    app.dependency_overrides[check_database_ready] = _database_override
    app.dependency_overrides[check_redis_ready] = _redis_override
    return app


async def _get(app: FastAPI, path: str):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        return await client.get(path)


@pytest.mark.asyncio
async def test_health_live_returns_200() -> None:
    """Liveness probe always returns 200."""
    response = await _get(_build_health_app(database_ready=False, redis_ready=False), "/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "live"}


@pytest.mark.asyncio
async def test_health_ready_returns_200_when_backends_are_reachable() -> None:
    response = await _get(_build_health_app(database_ready=True, redis_ready=True), "/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("database_ready", "redis_ready"),
    [(False, True), (True, False), (False, False)],
)
async def test_health_ready_returns_503_when_a_backend_is_down(
    database_ready: bool, redis_ready: bool
) -> None:
    app = _build_health_app(database_ready=database_ready, redis_ready=redis_ready)

    response = await _get(app, "/health/ready")

    assert response.status_code == 503
    assert response.json() == {"detail": "Service not ready.", "code": "service_unavailable"}


@pytest.mark.asyncio
async def test_health_ready_against_sqlite_without_redis(client: AsyncClient) -> None:
    """The memory rate-limit backend needs no Redis, so the database alone decides readiness."""
    response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}
