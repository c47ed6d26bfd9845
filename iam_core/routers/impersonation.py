"""Administrator impersonation routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from iam_core.core.roles import Permissions
from iam_core.core.sessions import UserWithPermissions
from iam_core.dependencies import (
    Container,
    CurrentIdentity,
    DatabaseSession,
    require_agency_access,
    require_permission,
)
from iam_core.schemas.impersonation import (
    EndImpersonationResponse,
    ImpersonatedUserResponse,
    ImpersonationHistoryItem,
    ImpersonationSessionResponse,
    ImpersonationStatusResponse,
    ScopedTokenResponse,
    StartImpersonationRequest,
    StartImpersonationResponse,
)
from iam_core.services.impersonation_service import UserSummary

router = APIRouter(prefix="/admin/impersonate", tags=["impersonation"])

ImpersonationToken = Annotated[str | None, Header(alias="X-Impersonation-Token")]


def _user_response(user: UserSummary | None) -> ImpersonatedUserResponse | None:
    if user is None:
        return None
    return ImpersonatedUserResponse(
        id=user.id, email=user.email, first_name=user.first_name, last_name=user.last_name
    )


@router.post(
    "",
    response_model=StartImpersonationResponse,
    dependencies=[
        Depends(require_agency_access),
        Depends(require_permission(Permissions.AGENCY_IMPERSONATE)),
    ],
)
async def start_impersonation(
    payload: StartImpersonationRequest,
    request: Request,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> StartImpersonationResponse:
    """Start acting as a user of one of the agency's tenants."""
    started = await container.impersonation_service.start(
        db,
        admin=identity,
        target_user_id=payload.target_user_id,
        reason=payload.reason,
        duration_minutes=payload.duration_minutes,
        request=request,
    )
    return StartImpersonationResponse(
        impersonation_id=started.impersonation_id,
        token=started.token,
        access_token=started.access_token,
        expires_in=started.expires_in,
        expires_at=started.expires_at,
        target_user=_user_response(started.target_user),
    )


@router.get("/status", response_model=ImpersonationStatusResponse)
async def impersonation_status(
    db: DatabaseSession,
    container: Container,
    token: ImpersonationToken = None,
) -> ImpersonationStatusResponse:
    """Report whether the presented impersonation artifact is active."""
    current = await container.impersonation_service.status(db, token)
    if not current.active:
        return ImpersonationStatusResponse(is_impersonating=False)
    return ImpersonationStatusResponse(
        is_impersonating=True,
        session=ImpersonationSessionResponse(
            id=current.impersonation_id,
            expires_at=current.expires_at,
            reason=current.reason,
        ),
        admin_user=_user_response(current.admin_user),
        target_user=_user_response(current.target_user),
    )


@router.post("/end", response_model=EndImpersonationResponse)
async def end_impersonation(
    request: Request,
    db: DatabaseSession,
    container: Container,
    token: ImpersonationToken = None,
) -> EndImpersonationResponse:
    """Switch back to the administrator; ending twice is harmless."""
    ended = await container.impersonation_service.end(db, token, request=request)
    return EndImpersonationResponse(ended=ended)


@router.post("/token", response_model=ScopedTokenResponse)
async def reissue_impersonation_token(
    db: DatabaseSession,
    container: Container,
    token: ImpersonationToken = None,
) -> ScopedTokenResponse:
    """Mint a fresh scoped access token for an open impersonation window."""
    scoped = await container.impersonation_service.reissue(db, token)
    return ScopedTokenResponse(access_token=scoped.access_token, expires_in=scoped.expires_in)


@router.get("/history", response_model=list[ImpersonationHistoryItem])
async def impersonation_history(
    admin: Annotated[UserWithPermissions, Depends(require_permission(Permissions.AGENCY_MANAGE))],
    db: DatabaseSession,
    container: Container,
    _agency: Annotated[UserWithPermissions, Depends(require_agency_access)],
) -> list[ImpersonationHistoryItem]:
    """Impersonation windows recently opened by the caller."""
    rows = await container.impersonation_service.history(db, admin.id)
    return [
        ImpersonationHistoryItem(
            id=row.id,
            admin_user_id=row.admin_user_id,
            target_user_id=row.target_user_id,
            reason=row.reason,
            created_at=row.created_at,
            expires_at=row.expires_at,
            ended_at=row.ended_at,
        )
        for row in rows
    ]
