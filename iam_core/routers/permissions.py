"""Per-tenant navigation permission routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from iam_core.core.identity import AuthenticatedIdentity
from iam_core.core.roles import RoleLevel
from iam_core.dependencies import (
    Container,
    CurrentIdentity,
    CurrentUser,
    DatabaseSession,
    TenantAccess,
    require_role_level,
)
from iam_core.schemas.permissions import (
    NavigationResponse,
    RoleNavigationResponse,
    RoleOverrideRequest,
    SuccessResponse,
    UserOverrideRequest,
    UserOverrideResponse,
)
from iam_core.services.permission_service import RoleNavigation, UserOverride

router = APIRouter(prefix="/tenants/{tenant_id}/permissions", tags=["permissions"])

_ADMIN_ONLY = [Depends(require_role_level(RoleLevel.TENANT_ADMIN))]


def _role_response(navigation: RoleNavigation) -> RoleNavigationResponse:
    return RoleNavigationResponse(
        role_slug=navigation.role_slug,
        nav_items=navigation.nav_items,
        is_customised=navigation.is_customised,
        default_nav_items=navigation.default_nav_items,
    )


def _user_response(override: UserOverride) -> UserOverrideResponse:
    return UserOverrideResponse(
        id=override.id,
        tenant_id=override.tenant_id,
        user_id=override.user_id,
        granted_nav_items=override.granted_nav_items,
        revoked_nav_items=override.revoked_nav_items,
        updated_at=override.updated_at,
        email=override.email,
        first_name=override.first_name,
        last_name=override.last_name,
    )


async def _audit_override_change(
    container: Container,
    request: Request,
    identity: AuthenticatedIdentity,
    event_type: str,
    tenant_id: UUID,
    target_id: UUID | None,
    target_type: str,
    metadata: dict[str, object],
) -> None:
    await container.audit_service.record(
        event_type=event_type,
        actor_type="user",
        success=True,
        request=request,
        actor_id=identity.user_id,
        impersonator_id=identity.impersonator_id,
        target_id=target_id,
        target_type=target_type,
        metadata={"tenant_id": tenant_id, **metadata},
    )


@router.get("/my-nav", response_model=NavigationResponse)
async def my_navigation(
    tenant_id: TenantAccess,
    user: CurrentUser,
    db: DatabaseSession,
    container: Container,
) -> NavigationResponse:
    """Resolved navigation for the caller within the tenant."""
    # Agency identities have no tenant-level overrides.
    scope = tenant_id if user.tenant_id is not None else None
    nav = await container.permission_service.resolve_navigation(
        db, user_id=user.id, role_slug=user.role_slug, tenant_id=scope
    )
    return NavigationResponse(nav_items=nav)


@router.get("/roles", response_model=list[RoleNavigationResponse], dependencies=_ADMIN_ONLY)
async def list_role_overrides(
    tenant_id: TenantAccess, db: DatabaseSession, container: Container
) -> list[RoleNavigationResponse]:
    """Effective navigation for every configurable role."""
    roles = await container.permission_service.list_role_overrides(db, tenant_id)
    return [_role_response(role) for role in roles]


@router.put("/roles/{role_slug}", response_model=RoleNavigationResponse, dependencies=_ADMIN_ONLY)
async def set_role_override(
    role_slug: str,
    payload: RoleOverrideRequest,
    request: Request,
    tenant_id: TenantAccess,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> RoleNavigationResponse:
    """Replace a role's navigation for this tenant."""
    saved = await container.permission_service.set_role_override(
        db, tenant_id, role_slug, payload.nav_items, updated_by=identity.user_id
    )
    await _audit_override_change(
        container,
        request,
        identity,
        "permissions.role_override.updated",
        tenant_id,
        None,
        "role",
        {"role_slug": role_slug, "nav_items": saved.nav_items},
    )
    return _role_response(saved)


@router.delete(
    "/roles/{role_slug}", response_model=RoleNavigationResponse, dependencies=_ADMIN_ONLY
)
async def reset_role_override(
    role_slug: str,
    request: Request,
    tenant_id: TenantAccess,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> RoleNavigationResponse:
    """Drop a role override and fall back to the defaults."""
    defaults = await container.permission_service.reset_role_override(db, tenant_id, role_slug)
    await _audit_override_change(
        container,
        request,
        identity,
        "permissions.role_override.reset",
        tenant_id,
        None,
        "role",
        {"role_slug": role_slug},
    )
    return _role_response(defaults)


@router.get("/users", response_model=list[UserOverrideResponse], dependencies=_ADMIN_ONLY)
async def list_user_overrides(
    tenant_id: TenantAccess, db: DatabaseSession, container: Container
) -> list[UserOverrideResponse]:
    """Every user override in the tenant."""
    overrides = await container.permission_service.list_user_overrides(db, tenant_id)
    return [_user_response(override) for override in overrides]


@router.get(
    "/users/{user_id}", response_model=UserOverrideResponse | None, dependencies=_ADMIN_ONLY
)
async def get_user_override(
    user_id: UUID, tenant_id: TenantAccess, db: DatabaseSession, container: Container
) -> UserOverrideResponse | None:
    """One user's override, or null when none is stored."""
    override = await container.permission_service.get_user_override(db, tenant_id, user_id)
    return _user_response(override) if override is not None else None


@router.put("/users/{user_id}", response_model=UserOverrideResponse, dependencies=_ADMIN_ONLY)
async def set_user_override(
    user_id: UUID,
    payload: UserOverrideRequest,
    request: Request,
    tenant_id: TenantAccess,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> UserOverrideResponse:
    """Store grants and revocations for one user."""
    saved = await container.permission_service.set_user_override(
        db,
        tenant_id,
        user_id,
        payload.granted_nav_items,
        payload.revoked_nav_items,
        updated_by=identity.user_id,
    )
    await _audit_override_change(
        container,
        request,
        identity,
        "permissions.user_override.updated",
        tenant_id,
        user_id,
        "user",
        {"granted": saved.granted_nav_items, "revoked": saved.revoked_nav_items},
    )
    return _user_response(saved)


@router.delete("/users/{user_id}", response_model=SuccessResponse, dependencies=_ADMIN_ONLY)
async def clear_user_override(
    user_id: UUID,
    request: Request,
    tenant_id: TenantAccess,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> SuccessResponse:
    """Remove a user's override."""
    await container.permission_service.clear_user_override(db, tenant_id, user_id)
    await _audit_override_change(
        container,
        request,
        identity,
        "permissions.user_override.cleared",
        tenant_id,
        user_id,
        "user",
        {},
    )
    return SuccessResponse()
