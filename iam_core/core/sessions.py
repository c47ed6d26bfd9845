"""Database-backed login session lifecycle and identity resolution."""

from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from hashlib import sha256
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.core.roles import DEFAULT_ROLE_SLUG, get_role
from iam_core.core.tokens import REFRESH_TOKEN_TTL_SECONDS
from iam_core.models.session import Session
from iam_core.models.user import User, UserRole

logger = structlog.get_logger(__name__)

REVOKED_ALL_SESSIONS = "all_sessions_revoked"
REVOKED_LOGOUT = "logout"
REVOKED_BY_ADMIN = "admin_revoked"


def _utc_clock() -> datetime:
    return datetime.now(UTC)


def hash_token(raw_token: str) -> str:
    """Hash an opaque token value for storage and lookup."""
    return sha256(raw_token.encode("utf-8")).hexdigest()


def generate_opaque_token() -> str:
    """Return 32 random bytes encoded as hex."""
    return secrets.token_hex(32)


@dataclass(frozen=True)
class SessionMetadata:
    """Client details recorded alongside a session; informational only."""

    user_agent: str | None = None
    ip_address: str | None = None
    device_info: dict[str, Any] | None = None


@dataclass(frozen=True)
class CreatedSession:
    """Newly created session and the only copy of its raw refresh value."""

    session_id: UUID
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class ValidatedSession:
    """Session matched by a refresh value."""

    session_id: UUID
    user_id: UUID


@dataclass(frozen=True)
class UserWithPermissions:
    """User identity resolved against static role definitions."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    tenant_id: UUID | None
    agency_id: UUID | None
    role_slug: str
    role_level: int
    permissions: tuple[str, ...] = field(default=())
    is_agency_user: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


class SessionManager:
    """Create, validate, rotate and revoke sessions stored in the database."""

    def __init__(
        self,
        session_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS,
        clock: Callable[[], datetime] = _utc_clock,
    ) -> None:
        self._session_ttl = timedelta(seconds=session_ttl_seconds)
        self._clock = clock

    async def create_session(
        self,
        db: AsyncSession,
        user_id: UUID,
        metadata: SessionMetadata | None = None,
    ) -> CreatedSession:
        """Persist a new session and return its raw refresh value."""
        metadata = metadata or SessionMetadata()
        raw_token = generate_opaque_token()
        now = self._clock()
        session_row = Session(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            user_agent=metadata.user_agent,
            ip_address=metadata.ip_address,
            device_info=metadata.device_info,
            created_at=now,
            last_active_at=now,
            expires_at=now + self._session_ttl,
        )
        try:
            db.add(session_row)
            await db.flush()
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        logger.info("session_created", session_id=str(session_row.id), user_id=str(user_id))
        return CreatedSession(
            session_id=session_row.id,
            refresh_token=raw_token,
            expires_at=session_row.expires_at,
        )

    async def validate_session(
        self, db: AsyncSession, raw_refresh_token: str
    ) -> ValidatedSession | None:
        """Return the live session matching a refresh value and bump its activity time."""
        now = self._clock()
        result = await db.execute(
            select(Session.id, Session.user_id).where(
                Session.token_hash == hash_token(raw_refresh_token),
                Session.revoked_at.is_(None),
                Session.expires_at > now,
            )
        )
        row = result.first()
        if row is None:
            return None
        await db.execute(update(Session).where(Session.id == row.id).values(last_active_at=now))
        await db.commit()
        return ValidatedSession(session_id=row.id, user_id=row.user_id)

    async def rotate_refresh_token(
        self, db: AsyncSession, session_id: UUID, raw_refresh_token: str
    ) -> str | None:
        """Swap the stored hash for a new one; only one caller can redeem a given value."""
        now = self._clock()
        new_token = generate_opaque_token()
        result = await db.execute(
            update(Session)
            .where(
                Session.id == session_id,
                Session.token_hash == hash_token(raw_refresh_token),
                Session.revoked_at.is_(None),
                Session.expires_at > now,
            )
            .values(token_hash=hash_token(new_token), last_active_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount != 1:
            logger.warning("refresh_rotation_rejected", session_id=str(session_id))
            return None
        return new_token

    async def revoke_session(
        self, db: AsyncSession, session_id: UUID, reason: str | None = None
    ) -> bool:
        """Mark one session revoked; returns False when it already was."""
        result = await db.execute(
            update(Session)
            .where(Session.id == session_id, Session.revoked_at.is_(None))
            .values(revoked_at=self._clock(), revoked_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        revoked = result.rowcount > 0
        if revoked:
            logger.info("session_revoked", session_id=str(session_id), reason=reason)
        return revoked

    async def revoke_all_user_sessions(
        self,
        db: AsyncSession,
        user_id: UUID,
        except_session_id: UUID | None = None,
        reason: str = REVOKED_ALL_SESSIONS,
    ) -> int:
        """Revoke every live session of a user, optionally sparing one."""
        statement = update(Session).where(
            Session.user_id == user_id, Session.revoked_at.is_(None)
        )
        if except_session_id is not None:
            statement = statement.where(Session.id != except_session_id)
        result = await db.execute(
            statement.values(
                revoked_at=self._clock(), revoked_reason=reason
            ).execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info(
            "user_sessions_revoked",
            user_id=str(user_id),
            revoked_count=result.rowcount,
            kept_session_id=str(except_session_id) if except_session_id else None,
        )
        return result.rowcount

    async def get_session(self, db: AsyncSession, session_id: UUID) -> Session | None:
        """Fetch a session row by id regardless of state."""
        result = await db.execute(select(Session).where(Session.id == session_id))
        return result.scalar_one_or_none()

    async def is_session_active(self, db: AsyncSession, session_id: UUID) -> bool:
        """Return True while the session is neither revoked nor expired."""
        result = await db.execute(
            select(Session.id).where(
                Session.id == session_id,
                Session.revoked_at.is_(None),
                Session.expires_at > self._clock(),
            )
        )
        return result.first() is not None

    async def list_active_sessions(self, db: AsyncSession, user_id: UUID) -> list[Session]:
        """List a user's live sessions, most recently active first."""
        result = await db.execute(
            select(Session)
            .where(
                Session.user_id == user_id,
                Session.revoked_at.is_(None),
                Session.expires_at > self._clock(),
            )
            .order_by(Session.last_active_at.desc())
        )
        return list(result.scalars().all())

    async def get_user_with_permissions(
        self, db: AsyncSession, user_id: UUID
    ) -> UserWithPermissions | None:
        """Resolve a user's highest role and the union of all role permissions."""
        result = await db.execute(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()
        if user is None:
            return None

        role_result = await db.execute(
            select(UserRole.role_slug).where(UserRole.user_id == user_id).order_by(UserRole.id)
        )
        role_slug, role_level = DEFAULT_ROLE_SLUG, 0
        permissions: dict[str, None] = {}
        for assigned_slug in role_result.scalars().all():
            role = get_role(assigned_slug)
            if role is None:
                logger.warning("unknown_role_assignment", user_id=str(user_id), role=assigned_slug)
                continue
            permissions.update(dict.fromkeys(role.permissions))
            # Ties keep the role assigned first.
            if role.level > role_level:
                role_slug, role_level = role.slug, role.level

        return UserWithPermissions(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            tenant_id=user.tenant_id,
            agency_id=user.agency_id,
            role_slug=role_slug,
            role_level=role_level,
            permissions=tuple(permissions),
            is_agency_user=user.agency_id is not None and user.tenant_id is None,
        )
