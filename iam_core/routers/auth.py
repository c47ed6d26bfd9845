"""Authentication routes."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from iam_core.core.rate_limit import extract_client_ip
from iam_core.core.sessions import SessionMetadata, UserWithPermissions
from iam_core.dependencies import Container, CurrentIdentity, DatabaseSession, fail_closed
from iam_core.schemas.auth import (
    ImpersonatorResponse,
    LoginRequest,
    LogoutAllRequest,
    LogoutAllResponse,
    MeResponse,
    RefreshTokenRequest,
    TokenPairResponse,
    UserSummaryResponse,
)
from iam_core.services.auth_service import IssuedTokens

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_summary(user: UserWithPermissions) -> UserSummaryResponse:
    return UserSummaryResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        tenant_id=user.tenant_id,
        agency_id=user.agency_id,
        role_slug=user.role_slug,
        role_level=user.role_level,
        permissions=list(user.permissions),
    )


def _token_pair_response(issued: IssuedTokens) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        expires_in=issued.expires_in,
        user=_user_summary(issued.user),
    )


@router.post("/login", response_model=TokenPairResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    db: DatabaseSession,
    container: Container,
) -> TokenPairResponse:
    """Authenticate email/password credentials and issue a token pair."""
    metadata = SessionMetadata(
        user_agent=request.headers.get("user-agent"),
        ip_address=extract_client_ip(request.headers)[:45],
        device_info=payload.device_info,
    )
    issued = await container.auth_service.login(
        db, email=payload.email, password=payload.password, metadata=metadata, request=request
    )
    return _token_pair_response(issued)


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(
    payload: RefreshTokenRequest,
    db: DatabaseSession,
    container: Container,
) -> TokenPairResponse:
    """Exchange a refresh token for a new pair; the presented token is retired."""
    async with fail_closed(container.settings.database.lookup_timeout_seconds, "refresh"):
        issued = await container.auth_service.refresh(db, payload.refresh_token)
    return _token_pair_response(issued)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
) -> Response:
    """Revoke the current session."""
    await container.auth_service.logout(db, identity, request=request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/logout-all", response_model=LogoutAllResponse)
async def logout_all(
    request: Request,
    identity: CurrentIdentity,
    db: DatabaseSession,
    container: Container,
    payload: LogoutAllRequest | None = None,
) -> LogoutAllResponse:
    """Revoke every other session of the caller, optionally the current one too."""
    include_current = payload.include_current if payload is not None else False
    revoked = await container.auth_service.logout_all(
        db, identity, include_current=include_current, request=request
    )
    return LogoutAllResponse(revoked_count=revoked)


@router.get("/me", response_model=MeResponse)
async def me(identity: CurrentIdentity) -> MeResponse:
    """Return the identity asserted by the access token."""
    impersonated_by = None
    if identity.impersonated_by is not None:
        impersonated_by = ImpersonatorResponse(
            user_id=identity.impersonated_by.user_id,
            session_id=identity.impersonated_by.session_id,
        )
    return MeResponse(
        user_id=identity.user_id,
        session_id=identity.session_id,
        email=identity.email,
        tenant_id=identity.tenant_id,
        agency_id=identity.agency_id,
        role_slug=identity.role_slug,
        role_level=identity.role_level,
        permissions=sorted(identity.permissions),
        impersonated_by=impersonated_by,
    )

