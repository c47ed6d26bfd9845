"""User lookup, password validation and role assignment services."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.core.roles import get_role
from iam_core.errors import BadRequest, Conflict
from iam_core.models.tenant import Tenant
from iam_core.models.user import User, UserRole


class UserService:
    """Service responsible for user retrieval and password verification."""

    def __init__(self, bcrypt_rounds: int = 12) -> None:
        self._password_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=bcrypt_rounds
        )

    async def get_user_by_email(self, db_session: AsyncSession, email: str) -> User | None:
        """Fetch an active, non-deleted user by email."""
        statement = select(User).where(
            func.lower(User.email) == email.lower(),
            User.deleted_at.is_(None),
            User.is_active.is_(True),
        )
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_user(self, db_session: AsyncSession, user_id: UUID) -> User | None:
        """Fetch a non-deleted user by id."""
        result = await db_session.execute(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def get_users(self, db_session: AsyncSession, user_ids: Sequence[UUID]) -> dict[UUID, User]:
        """Fetch several users keyed by id, including soft-deleted ones."""
        if not user_ids:
            return {}
        result = await db_session.execute(select(User).where(User.id.in_(set(user_ids))))
        return {user.id: user for user in result.scalars().all()}

    async def get_tenant(self, db_session: AsyncSession, tenant_id: UUID) -> Tenant | None:
        result = await db_session.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one_or_none()

    async def authenticate_user(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
    ) -> User | None:
        """Authenticate user credentials for password login."""
        user = await self.get_user_by_email(db_session=db_session, email=email)
        if user is None or user.password_hash is None:
            self._password_context.dummy_verify()
            return None
        if not self.verify_password(password=password, password_hash=user.password_hash):
            return None
        return user

    async def create_user(
        self,
        db_session: AsyncSession,
        email: str,
        password: str,
        role_slugs: Sequence[str],
        first_name: str = "",
        last_name: str = "",
        tenant_id: UUID | None = None,
        agency_id: UUID | None = None,
    ) -> User:
        """Create a user with password credentials and ordered role assignments."""
        unknown = [slug for slug in role_slugs if get_role(slug) is None]
        if unknown:
            raise BadRequest(f"Unknown role: {unknown[0]}.", "invalid_request")
        if await self.get_user_by_email(db_session, email) is not None:
            raise Conflict("A user with this email already exists.")

        user = User(
            email=email.strip().lower(),
            password_hash=self.hash_password(password),
            first_name=first_name,
            last_name=last_name,
            tenant_id=tenant_id,
            agency_id=agency_id,
            is_active=True,
        )
        try:
            db_session.add(user)
            await db_session.flush()
            for slug in dict.fromkeys(role_slugs):
                db_session.add(UserRole(user_id=user.id, role_slug=slug))
                # Flush per role so ids follow assignment order.
                await db_session.flush()
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return user

    async def soft_delete_user(self, db_session: AsyncSession, user_id: UUID) -> bool:
        """Mark a user deleted and inactive; returns False when already gone."""
        user = await self.get_user(db_session, user_id)
        if user is None:
            return False
        user.deleted_at = datetime.now(UTC)
        user.is_active = False
        await db_session.commit()
        return True

    def hash_password(self, password: str) -> str:
        """Generate a bcrypt hash for the provided password."""
        return str(self._password_context.hash(password))

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a plaintext password against the stored bcrypt hash."""
        return bool(self._password_context.verify(password, password_hash))
