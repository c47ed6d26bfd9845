"""Shared integration-test fixtures backed by a temporary SQLite database."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.config import Settings
from iam_core.container import ServiceContainer
from iam_core.db.session import create_schema
from iam_core.main import create_app
from iam_core.models.tenant import Agency, Tenant
from iam_core.services.user_service import UserService

ACCESS_SECRET = "integration-access-secret-0123456789abcdef"
REFRESH_SECRET = "integration-refresh-secret-0123456789abcdef"
DEFAULT_PASSWORD = "Password123!"


@dataclass(frozen=True)
class Organisation:
    """Seeded agency with one client tenant."""

    agency_id: UUID
    tenant_id: UUID


def build_settings(database_url: str, **rate_limit: Any) -> Settings:
    """Settings for one isolated application instance."""
    return Settings(
        app={"environment": "development", "service": "iam-core-test"},
        database={"url": database_url},
        jwt={"access_secret": ACCESS_SECRET, "refresh_secret": REFRESH_SECRET},
        rate_limit={
            "global_max_requests": 10_000,
            "auth_max_requests": 10_000,
            **rate_limit,
        },
    )


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'iam-test.db'}"


@pytest.fixture
async def app_factory(database_url: str) -> AsyncIterator[Callable[..., Awaitable[FastAPI]]]:
    """Build applications wired against a fresh schema; rate limits may be overridden."""
    created: list[FastAPI] = []

    async def _factory(**rate_limit: Any) -> FastAPI:
        application = create_app(build_settings(database_url, **rate_limit))
        await create_schema(application.state.container.engine)
        created.append(application)
        return application

    try:
        yield _factory
    finally:
        for application in created:
            await application.state.container.aclose()


@pytest.fixture
async def app(app_factory: Callable[..., Awaitable[FastAPI]]) -> FastAPI:
    return await app_factory()


@pytest.fixture
def container(app: FastAPI) -> ServiceContainer:
    return app.state.container


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as http_client:
        yield http_client


@pytest.fixture
async def db_session(container: ServiceContainer) -> AsyncIterator[AsyncSession]:
    """Yield a write-capable async DB session for test seeding and assertions."""
    async with container.session_factory() as session:
        yield session


@pytest.fixture
async def org_factory(db_session: AsyncSession) -> Callable[[str], Awaitable[Organisation]]:
    """Create an agency and one of its tenants."""

    async def _create(slug: str = "acme") -> Organisation:
        agency = Agency(name=f"{slug} agency")
        db_session.add(agency)
        await db_session.flush()
        tenant = Tenant(agency_id=agency.id, name=f"{slug} client", slug=slug)
        db_session.add(tenant)
        await db_session.commit()
        return Organisation(agency_id=agency.id, tenant_id=tenant.id)

    return _create


@pytest.fixture
async def user_factory(db_session: AsyncSession) -> Callable[..., Awaitable[Any]]:
    """Create active users with bcrypt passwords and ordered role assignments."""
    user_service = UserService(bcrypt_rounds=4)

    async def _create(
        email: str,
        roles: list[str],
        tenant_id: UUID | None = None,
        agency_id: UUID | None = None,
        password: str = DEFAULT_PASSWORD,
        first_name: str = "Test",
        last_name: str = "User",
    ) -> Any:
        return await user_service.create_user(
            db_session,
            email=email,
            password=password,
            role_slugs=roles,
            first_name=first_name,
            last_name=last_name,
            tenant_id=tenant_id,
            agency_id=agency_id,
        )

    return _create


@pytest.fixture
def login(client: AsyncClient) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Log in through the API and return the token pair payload."""

    async def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict[str, Any]:
        response = await client.post("/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login
