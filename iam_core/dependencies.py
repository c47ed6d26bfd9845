"""Shared FastAPI dependency helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.container import ServiceContainer
from iam_core.core.identity import AuthenticatedIdentity
from iam_core.core.roles import has_minimum_role_level
from iam_core.core.sessions import UserWithPermissions
from iam_core.errors import Forbidden, NotFound, Unauthenticated

logger = structlog.get_logger(__name__)

TENANT_HEADER = "X-Tenant-ID"


def get_container(request: Request) -> ServiceContainer:
    """Return the service container built for this application."""
    return request.app.state.container


Container = Annotated[ServiceContainer, Depends(get_container)]


async def get_database_session(container: Container) -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async with container.session_factory() as session:
        yield session


DatabaseSession = Annotated[AsyncSession, Depends(get_database_session)]


@asynccontextmanager
async def fail_closed(timeout_seconds: float, operation: str) -> AsyncIterator[None]:
    """Bound a store lookup and treat timeouts or store errors as unauthenticated."""
    try:
        async with asyncio.timeout(timeout_seconds):
            yield
    except TimeoutError as exc:
        logger.error("auth_lookup_timeout", operation=operation, timeout_seconds=timeout_seconds)
        raise Unauthenticated() from exc
    except (SQLAlchemyError, OSError) as exc:
        logger.error("auth_lookup_failed", operation=operation, error=str(exc))
        raise Unauthenticated() from exc


def _extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header."""
    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


async def get_current_identity(
    request: Request, db: DatabaseSession, container: Container
) -> AuthenticatedIdentity:
    """Authenticate the bearer token and confirm its backing session is still live."""
    token = _extract_bearer_token(request)
    if token is None:
        raise Unauthenticated()
    verification = container.token_service.verify_access(token)
    if verification.claims is None:
        raise Unauthenticated()
    try:
        identity = AuthenticatedIdentity.from_claims(verification.claims)
        admin_session_id = (
            UUID(identity.impersonated_by.session_id) if identity.impersonated_by else None
        )
    except ValueError as exc:
        raise Unauthenticated() from exc

    async with fail_closed(container.settings.database.lookup_timeout_seconds, "session_check"):
        if admin_session_id is not None:
            live = await container.impersonation_service.is_active(
                db, identity.session_id, admin_session_id
            )
        else:
            live = await container.session_manager.is_session_active(db, identity.session_id)
    if not live:
        logger.info(
            "access_rejected_inactive_session",
            session_id=str(identity.session_id),
            impersonating=identity.is_impersonating,
        )
        raise Unauthenticated()

    request.state.identity = identity
    return identity


CurrentIdentity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]


async def get_current_user(
    identity: CurrentIdentity, db: DatabaseSession, container: Container
) -> UserWithPermissions:
    """Load the caller's current roles and permissions from the store."""
    async with fail_closed(container.settings.database.lookup_timeout_seconds, "user_lookup"):
        user = await container.session_manager.get_user_with_permissions(db, identity.user_id)
    if user is None:
        raise Unauthenticated()
    return user


CurrentUser = Annotated[UserWithPermissions, Depends(get_current_user)]


def require_permission(permission: str) -> Callable[..., Awaitable[UserWithPermissions]]:
    """Dependency factory enforcing one permission against current role assignments."""

    async def dependency(user: CurrentUser) -> UserWithPermissions:
        if permission not in user.permissions:
            raise Forbidden(f"Missing permission: {permission}.")
        return user

    return dependency


def require_role_level(min_level: int) -> Callable[..., Awaitable[UserWithPermissions]]:
    """Dependency factory enforcing a minimum role level."""

    async def dependency(user: CurrentUser) -> UserWithPermissions:
        if not has_minimum_role_level(user.role_level, min_level):
            raise Forbidden("Insufficient role level.")
        return user

    return dependency


async def require_agency_access(user: CurrentUser) -> UserWithPermissions:
    """Allow only identities that belong to an agency."""
    if user.agency_id is None:
        raise Forbidden("Agency access required.")
    return user


async def require_tenant_access(
    request: Request, user: CurrentUser, db: DatabaseSession, container: Container
) -> UUID:
    """Resolve the target tenant and check the caller may act inside it."""
    raw_tenant_id = request.path_params.get("tenant_id") or request.headers.get(TENANT_HEADER)
    if not raw_tenant_id:
        raise Forbidden("Tenant ID required.")
    try:
        tenant_id = UUID(str(raw_tenant_id))
    except ValueError as exc:
        raise NotFound("Tenant not found.") from exc

    if user.is_agency_user:
        async with fail_closed(container.settings.database.lookup_timeout_seconds, "tenant_lookup"):
            tenant = await container.user_service.get_tenant(db, tenant_id)
        if tenant is None or tenant.agency_id != user.agency_id:
            raise NotFound("Tenant not found.")
        return tenant_id

    if user.tenant_id != tenant_id:
        raise Forbidden("Access to this tenant is not allowed.")
    return tenant_id


TenantAccess = Annotated[UUID, Depends(require_tenant_access)]
