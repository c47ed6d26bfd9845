"""Session listing and revocation routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status

from iam_core.core.roles import RoleLevel
from iam_core.core.sessions import REVOKED_BY_ADMIN, REVOKED_LOGOUT, UserWithPermissions
from iam_core.dependencies import (
    Container,
    CurrentIdentity,
    DatabaseSession,
    require_role_level,
)
from iam_core.errors import Forbidden, NotFound
from iam_core.schemas.auth import RevokeSessionsResponse, SessionResponse

router = APIRouter(tags=["sessions"])


@router.get("/auth/sessions", response_model=list[SessionResponse])
async def list_sessions(
    identity: CurrentIdentity, db: DatabaseSession, container: Container
) -> list[SessionResponse]:
    """List the caller's live sessions."""
    if identity.is_impersonating:
        raise Forbidden("Session management is unavailable while impersonating.")
    rows = await container.session_manager.list_active_sessions(db, identity.user_id)
    return [
        SessionResponse(
            id=row.id,
            created_at=row.created_at,
            last_active_at=row.last_active_at,
            expires_at=row.expires_at,
            user_agent=row.user_agent,
            ip_address=row.ip_address,
            device_info=row.device_info,
            is_current=row.id == identity.session_id,
        )
        for row in rows
    ]


@router.delete("/auth/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_own_session(
    session_id: UUID,
    request: Request,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> Response:
    """Revoke one of the caller's own sessions."""
    if identity.is_impersonating:
        raise Forbidden("Session management is unavailable while impersonating.")
    row = await container.session_manager.get_session(db, session_id)
    if row is None or row.user_id != identity.user_id:
        raise NotFound("Session not found.")
    revoked = await container.session_manager.revoke_session(db, session_id, reason=REVOKED_LOGOUT)
    if revoked:
        await container.audit_service.record(
            event_type="session.revoked",
            actor_type="user",
            success=True,
            request=request,
            actor_id=identity.user_id,
            target_id=session_id,
            target_type="session",
            metadata={"reason": REVOKED_LOGOUT},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/admin/users/{user_id}/sessions/revoke", response_model=RevokeSessionsResponse)
async def admin_revoke_user_sessions(
    user_id: UUID,
    request: Request,
    identity: CurrentIdentity,
    admin: Annotated[UserWithPermissions, Depends(require_role_level(RoleLevel.TENANT_ADMIN))],
    db: DatabaseSession,
    container: Container,
) -> RevokeSessionsResponse:
    """Force-revoke every session of a user the administrator manages."""
    target = await container.session_manager.get_user_with_permissions(db, user_id)
    if target is None:
        raise NotFound("User not found.")

    if admin.is_agency_user:
        tenant = (
            await container.user_service.get_tenant(db, target.tenant_id)
            if target.tenant_id
            else None
        )
        same_scope = (tenant is not None and tenant.agency_id == admin.agency_id) or (
            target.tenant_id is None and target.agency_id == admin.agency_id
        )
    else:
        same_scope = target.tenant_id is not None and target.tenant_id == admin.tenant_id
    if not same_scope:
        raise NotFound("User not found.")
    if target.role_level > admin.role_level:
        raise Forbidden("Cannot revoke sessions of a more privileged user.")

    revoked = await container.session_manager.revoke_all_user_sessions(
        db, user_id, reason=REVOKED_BY_ADMIN
    )
    await container.audit_service.record(
        event_type="session.admin_revoked",
        actor_type="admin",
        success=True,
        request=request,
        actor_id=identity.user_id,
        impersonator_id=identity.impersonator_id,
        target_id=user_id,
        target_type="user",
        metadata={"revoked_count": revoked, "reason": REVOKED_BY_ADMIN},
    )
    return RevokeSessionsResponse(revoked_count=revoked)
