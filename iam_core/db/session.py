"""Async SQLAlchemy engine and session factory construction."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from iam_core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Build the async SQLAlchemy engine for the configured database."""
    url = settings.database.url
    if url.startswith("sqlite+aiosqlite://"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the async session factory bound to one engine."""
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create every mapped table that does not exist yet."""
    from iam_core.db.base import Base, import_model_modules

    import_model_modules()
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
