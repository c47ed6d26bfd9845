"""Login, refresh and logout orchestration over the token and session primitives."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.core.identity import AuthenticatedIdentity
from iam_core.core.sessions import (
    REVOKED_LOGOUT,
    SessionManager,
    SessionMetadata,
    UserWithPermissions,
)
from iam_core.core.tokens import AccessClaims, TokenService
from iam_core.errors import Forbidden, InvalidCredentials, Unauthenticated
from iam_core.services.audit_service import AuditService
from iam_core.services.user_service import UserService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IssuedTokens:
    """Access/refresh pair plus the identity it was issued for."""

    access_token: str
    refresh_token: str
    expires_in: int
    session_id: UUID
    user: UserWithPermissions


def build_access_claims(user: UserWithPermissions, session_id: UUID) -> AccessClaims:
    """Claims for a normal (non-impersonated) access token."""
    return AccessClaims(
        sub=str(user.id),
        sid=str(session_id),
        email=user.email,
        role_slug=user.role_slug,
        role_level=user.role_level,
        permissions=user.permissions,
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        agency_id=str(user.agency_id) if user.agency_id else None,
    )


class AuthService:
    """Issue, rotate and revoke credentials for password logins."""

    def __init__(
        self,
        token_service: TokenService,
        session_manager: SessionManager,
        user_service: UserService,
        audit_service: AuditService,
    ) -> None:
        self._tokens = token_service
        self._sessions = session_manager
        self._users = user_service
        self._audit = audit_service

    async def login(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        metadata: SessionMetadata | None = None,
        request: Request | None = None,
    ) -> IssuedTokens:
        """Verify credentials, open a session and mint its first token pair."""
        user = await self._users.authenticate_user(db, email=email, password=password)
        profile = await self._sessions.get_user_with_permissions(db, user.id) if user else None
        if profile is None:
            await self._audit.record(
                event_type="user.login.failure",
                actor_type="user",
                success=False,
                request=request,
                failure_reason="invalid_credentials",
                metadata={"provider": "password"},
            )
            raise InvalidCredentials()

        created = await self._sessions.create_session(db, profile.id, metadata)
        issued = self._issue_pair(profile, created.session_id, created.refresh_token)
        await self._audit.record(
            event_type="user.login.success",
            actor_type="user",
            success=True,
            request=request,
            actor_id=profile.id,
            target_id=created.session_id,
            target_type="session",
            metadata={"provider": "password"},
        )
        return issued

    async def refresh(self, db: AsyncSession, refresh_token: str) -> IssuedTokens:
        """Rotate a session's refresh value; the presented token can never be used again."""
        verification = self._tokens.verify_refresh(refresh_token)
        if verification.claims is None:
            raise Unauthenticated()
        claims = verification.claims

        validated = await self._sessions.validate_session(db, claims.jti)
        if validated is None or str(validated.session_id) != claims.sid:
            logger.warning("refresh_rejected", session_id=claims.sid, reason="session_not_live")
            raise Unauthenticated()
        if str(validated.user_id) != claims.sub:
            logger.warning("refresh_rejected", session_id=claims.sid, reason="subject_mismatch")
            raise Unauthenticated()

        rotated = await self._sessions.rotate_refresh_token(db, validated.session_id, claims.jti)
        if rotated is None:
            raise Unauthenticated()

        profile = await self._sessions.get_user_with_permissions(db, validated.user_id)
        if profile is None:
            await self._sessions.revoke_session(db, validated.session_id, reason="user_deleted")
            raise Unauthenticated()
        return self._issue_pair(profile, validated.session_id, rotated)

    async def logout(
        self, db: AsyncSession, identity: AuthenticatedIdentity, request: Request | None = None
    ) -> None:
        """Revoke the caller's current session."""
        if identity.is_impersonating:
            raise Forbidden("End impersonation instead of logging out.")
        await self._sessions.revoke_session(db, identity.session_id, reason=REVOKED_LOGOUT)
        await self._audit.record(
            event_type="session.revoked",
            actor_type="user",
            success=True,
            request=request,
            actor_id=identity.user_id,
            target_id=identity.session_id,
            target_type="session",
            metadata={"reason": REVOKED_LOGOUT},
        )

    async def logout_all(
        self,
        db: AsyncSession,
        identity: AuthenticatedIdentity,
        include_current: bool = False,
        request: Request | None = None,
    ) -> int:
        """Revoke every session of the caller, keeping the current one unless asked not to."""
        if identity.is_impersonating:
            raise Forbidden("End impersonation instead of logging out.")
        revoked = await self._sessions.revoke_all_user_sessions(
            db,
            identity.user_id,
            except_session_id=None if include_current else identity.session_id,
        )
        await self._audit.record(
            event_type="session.revoked_all",
            actor_type="user",
            success=True,
            request=request,
            actor_id=identity.user_id,
            target_id=identity.user_id,
            target_type="user",
            metadata={"revoked_count": revoked, "include_current": include_current},
        )
        return revoked

    def _issue_pair(
        self, profile: UserWithPermissions, session_id: UUID, raw_refresh: str
    ) -> IssuedTokens:
        access_token = self._tokens.issue_access(build_access_claims(profile, session_id))
        refresh_token = self._tokens.issue_refresh(str(profile.id), str(session_id), jti=raw_refresh)
        return IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._tokens.access_ttl_seconds,
            session_id=session_id,
            user=profile,
        )
