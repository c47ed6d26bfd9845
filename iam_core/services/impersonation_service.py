"""Administrator impersonation: start, status, end and scoped token issuance."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.config import ImpersonationSettings
from iam_core.core.identity import AuthenticatedIdentity
from iam_core.core.roles import Permissions
from iam_core.core.sessions import (
    SessionManager,
    UserWithPermissions,
    generate_opaque_token,
    hash_token,
)
from iam_core.core.tokens import AccessClaims, ImpersonatorRef, TokenService
from iam_core.errors import BadRequest, Forbidden, NotFound, Unauthenticated
from iam_core.models.impersonation import ImpersonationSession
from iam_core.models.user import User
from iam_core.services.audit_service import AuditService
from iam_core.services.user_service import UserService

logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 50
MAX_REASON_LENGTH = 500


@dataclass(frozen=True)
class UserSummary:
    """Display fields for impersonation banners."""

    id: UUID
    email: str
    first_name: str
    last_name: str


@dataclass(frozen=True)
class ImpersonationStart:
    """Result of opening an impersonation window."""

    impersonation_id: UUID
    token: str
    access_token: str
    expires_in: int
    expires_at: datetime
    target_user: UserSummary


@dataclass(frozen=True)
class ImpersonationStatus:
    """Whether an impersonation artifact is live, with banner details when it is."""

    active: bool
    impersonation_id: UUID | None = None
    expires_at: datetime | None = None
    reason: str | None = None
    admin_user: UserSummary | None = None
    target_user: UserSummary | None = None


@dataclass(frozen=True)
class ScopedToken:
    access_token: str
    expires_in: int


def _summary(user: UserWithPermissions | User) -> UserSummary:
    return UserSummary(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
    )


class ImpersonationService:
    """State machine ``NotImpersonating -> Active -> Ended`` backed by impersonation rows."""

    def __init__(
        self,
        token_service: TokenService,
        session_manager: SessionManager,
        user_service: UserService,
        audit_service: AuditService,
        settings: ImpersonationSettings,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._tokens = token_service
        self._sessions = session_manager
        self._users = user_service
        self._audit = audit_service
        self._settings = settings
        self._clock = clock

    async def start(
        self,
        db: AsyncSession,
        admin: AuthenticatedIdentity,
        target_user_id: UUID,
        reason: str | None = None,
        duration_minutes: int | None = None,
        request: Request | None = None,
    ) -> ImpersonationStart:
        """Open an impersonation window and mint a target-scoped access token."""
        if admin.is_impersonating:
            raise Forbidden("Cannot start impersonation while impersonating.")

        # Token permissions are a snapshot; authorize against current role assignments.
        current_admin = await self._sessions.get_user_with_permissions(db, admin.user_id)
        if current_admin is None:
            raise Unauthenticated()
        if current_admin.agency_id is None:
            raise Forbidden("Agency access required.")
        if Permissions.AGENCY_IMPERSONATE not in current_admin.permissions:
            raise Forbidden(f"Missing permission: {Permissions.AGENCY_IMPERSONATE}.")

        duration = duration_minutes if duration_minutes is not None else self._settings.default_minutes
        if not self._settings.min_minutes <= duration <= self._settings.max_minutes:
            raise BadRequest(
                f"Duration must be between {self._settings.min_minutes} and "
                f"{self._settings.max_minutes} minutes."
            )
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise BadRequest(f"Reason must be at most {MAX_REASON_LENGTH} characters.")
        if target_user_id == admin.user_id:
            raise BadRequest("Cannot impersonate yourself.")

        target = await self._sessions.get_user_with_permissions(db, target_user_id)
        if target is None:
            raise NotFound("User not found.")
        await self._ensure_same_agency(db, current_admin, target)
        if target.agency_id is not None and target.tenant_id is None:
            raise Forbidden("Cannot impersonate agency-level users.")

        raw_token = generate_opaque_token()
        now = self._clock()
        expires_at = now + timedelta(minutes=duration)
        row = ImpersonationSession(
            admin_user_id=admin.user_id,
            admin_session_id=admin.session_id,
            target_user_id=target.id,
            token_hash=hash_token(raw_token),
            reason=reason,
            created_at=now,
            expires_at=expires_at,
        )
        try:
            await db.execute(
                update(ImpersonationSession)
                .where(
                    ImpersonationSession.admin_user_id == admin.user_id,
                    ImpersonationSession.ended_at.is_(None),
                )
                .values(ended_at=now)
                .execution_options(synchronize_session=False)
            )
            db.add(row)
            await db.flush()
        except Exception:
            await db.rollback()
            raise
        await db.commit()

        access_token = self._issue_scoped_token(target, row.id, admin)
        logger.info(
            "impersonation_started",
            impersonation_id=str(row.id),
            admin_user_id=str(admin.user_id),
            target_user_id=str(target.id),
            expires_at=expires_at.isoformat(),
        )
        await self._audit.record(
            event_type="impersonation.started",
            actor_type="admin",
            success=True,
            request=request,
            actor_id=admin.user_id,
            target_id=target.id,
            target_type="user",
            metadata={
                "impersonation_id": row.id,
                "reason": reason,
                "duration_minutes": duration,
            },
        )
        return ImpersonationStart(
            impersonation_id=row.id,
            token=raw_token,
            access_token=access_token,
            expires_in=self._tokens.access_ttl_seconds,
            expires_at=expires_at,
            target_user=_summary(target),
        )

    async def status(self, db: AsyncSession, raw_token: str | None) -> ImpersonationStatus:
        """Report whether an artifact is live; absent or stale artifacts are simply inactive."""
        if not raw_token:
            return ImpersonationStatus(active=False)
        row = await self._get_active_by_token(db, raw_token)
        if row is None:
            return ImpersonationStatus(active=False)
        if not await self._sessions.is_session_active(db, row.admin_session_id):
            return ImpersonationStatus(active=False)
        users = await self._users.get_users(db, [row.admin_user_id, row.target_user_id])
        admin_user = users.get(row.admin_user_id)
        target_user = users.get(row.target_user_id)
        return ImpersonationStatus(
            active=True,
            impersonation_id=row.id,
            expires_at=row.expires_at,
            reason=row.reason,
            admin_user=_summary(admin_user) if admin_user else None,
            target_user=_summary(target_user) if target_user else None,
        )

    async def end(
        self, db: AsyncSession, raw_token: str | None, request: Request | None = None
    ) -> bool:
        """End the window for an artifact; returns False when there was nothing to end."""
        if not raw_token:
            return False
        row = await self._get_active_by_token(db, raw_token)
        if row is None:
            return False
        result = await db.execute(
            update(ImpersonationSession)
            .where(ImpersonationSession.id == row.id, ImpersonationSession.ended_at.is_(None))
            .values(ended_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            return False
        logger.info(
            "impersonation_ended",
            impersonation_id=str(row.id),
            admin_user_id=str(row.admin_user_id),
            target_user_id=str(row.target_user_id),
        )
        await self._audit.record(
            event_type="impersonation.ended",
            actor_type="admin",
            success=True,
            request=request,
            actor_id=row.admin_user_id,
            target_id=row.target_user_id,
            target_type="user",
            metadata={"impersonation_id": row.id},
        )
        return True

    async def reissue(self, db: AsyncSession, raw_token: str | None) -> ScopedToken:
        """Mint a fresh scoped access token while the window is still open."""
        row = await self._get_active_by_token(db, raw_token) if raw_token else None
        if row is None:
            raise BadRequest("Invalid or expired impersonation session.")
        if not await self._sessions.is_session_active(db, row.admin_session_id):
            raise Unauthenticated()
        target = await self._sessions.get_user_with_permissions(db, row.target_user_id)
        if target is None:
            raise NotFound("User not found.")
        admin_ref = ImpersonatorRef(
            user_id=str(row.admin_user_id), session_id=str(row.admin_session_id)
        )
        access_token = self._tokens.issue_access(self._target_claims(target, row.id, admin_ref))
        return ScopedToken(access_token=access_token, expires_in=self._tokens.access_ttl_seconds)

    async def is_active(
        self, db: AsyncSession, impersonation_id: UUID, admin_session_id: UUID
    ) -> bool:
        """True while the window is open and the admin's own session is still live."""
        now = self._clock()
        result = await db.execute(
            select(ImpersonationSession.id).where(
                ImpersonationSession.id == impersonation_id,
                ImpersonationSession.admin_session_id == admin_session_id,
                ImpersonationSession.ended_at.is_(None),
                ImpersonationSession.expires_at > now,
            )
        )
        if result.first() is None:
            return False
        return await self._sessions.is_session_active(db, admin_session_id)

    async def history(self, db: AsyncSession, admin_user_id: UUID) -> list[ImpersonationSession]:
        """Most recent impersonation windows opened by an administrator."""
        result = await db.execute(
            select(ImpersonationSession)
            .where(ImpersonationSession.admin_user_id == admin_user_id)
            .order_by(ImpersonationSession.created_at.desc())
            .limit(HISTORY_LIMIT)
        )
        return list(result.scalars().all())

    async def _get_active_by_token(
        self, db: AsyncSession, raw_token: str
    ) -> ImpersonationSession | None:
        result = await db.execute(
            select(ImpersonationSession).where(
                ImpersonationSession.token_hash == hash_token(raw_token),
                ImpersonationSession.ended_at.is_(None),
                ImpersonationSession.expires_at > self._clock(),
            )
        )
        return result.scalar_one_or_none()

    async def _ensure_same_agency(
        self, db: AsyncSession, admin: UserWithPermissions, target: UserWithPermissions
    ) -> None:
        if target.tenant_id is not None:
            tenant = await self._users.get_tenant(db, target.tenant_id)
            if tenant is None or tenant.agency_id != admin.agency_id:
                raise Forbidden("Cannot impersonate users from other agencies.")
        elif target.agency_id != admin.agency_id:
            raise Forbidden("Cannot impersonate users from other agencies.")

    def _issue_scoped_token(
        self, target: UserWithPermissions, impersonation_id: UUID, admin: AuthenticatedIdentity
    ) -> str:
        admin_ref = ImpersonatorRef(user_id=str(admin.user_id), session_id=str(admin.session_id))
        return self._tokens.issue_access(self._target_claims(target, impersonation_id, admin_ref))

    @staticmethod
    def _target_claims(
        target: UserWithPermissions, impersonation_id: UUID, admin_ref: ImpersonatorRef
    ) -> AccessClaims:
        return AccessClaims(
            sub=str(target.id),
            sid=str(impersonation_id),
            email=target.email,
            role_slug=target.role_slug,
            role_level=target.role_level,
            permissions=target.permissions,
            tenant_id=str(target.tenant_id) if target.tenant_id else None,
            agency_id=str(target.agency_id) if target.agency_id else None,
            impersonated_by=admin_ref,
        )
