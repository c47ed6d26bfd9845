"""Health check router endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from iam_core.dependencies import Container
from iam_core.errors import ServiceUnavailable

router = APIRouter(prefix="/health", tags=["health"])


async def check_database_ready(container: Container) -> bool:
    """Return True when the database accepts a lightweight query."""
    try:
        async with container.engine.connect() as connection:
            await connection.execute(select(1))
        return True
    except (SQLAlchemyError, OSError):
        return False


async def check_redis_ready(container: Container) -> bool:
    """Return True when Redis responds to PING, or when Redis is not in use."""
    client = container.redis_client
    if client is None:
        return True
    try:
        return bool(await client.ping())
    except (RedisError, OSError):
        return False


@router.get("/live")
async def live() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "live"}


@router.get("/ready")
async def ready(
    database_ready: Annotated[bool, Depends(check_database_ready)],
    redis_ready: Annotated[bool, Depends(check_redis_ready)],
) -> dict[str, str]:
    """Readiness probe requiring the database and, when configured, Redis."""
    if not database_ready or not redis_ready:
        raise ServiceUnavailable()
    return {"status": "ready"}
