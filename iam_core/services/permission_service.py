"""Three-tier navigation resolution: role defaults, tenant role overrides, user overrides."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from iam_core.core.roles import CONFIGURABLE_ROLES, filter_nav_items, navigation_for_role
from iam_core.errors import BadRequest, NotFound
from iam_core.models.permission_override import TenantRolePermission, TenantUserPermission
from iam_core.models.user import User

logger = structlog.get_logger(__name__)

_INSERT_BY_DIALECT: dict[str, Callable[..., Any]] = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class RoleNavigation:
    """Effective navigation for a configurable role within one tenant."""

    role_slug: str
    nav_items: list[str]
    is_customised: bool
    default_nav_items: list[str]


@dataclass(frozen=True)
class UserOverride:
    """Stored grants and revocations for one user in one tenant."""

    id: UUID
    tenant_id: UUID
    user_id: UUID
    granted_nav_items: list[str]
    revoked_nav_items: list[str]
    updated_at: datetime | None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


def _upsert(db: AsyncSession, table: Any):
    """Pick the dialect's INSERT construct that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    try:
        return _INSERT_BY_DIALECT[dialect](table)
    except KeyError as exc:
        raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}") from exc


def _ensure_configurable(role_slug: str) -> None:
    if role_slug not in CONFIGURABLE_ROLES:
        raise BadRequest("Role not configurable.", "invalid_request")


class PermissionService:
    """Resolve and manage per-tenant navigation overrides; every call reads current state."""

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(UTC)) -> None:
        self._clock = clock

    async def resolve_navigation(
        self,
        db: AsyncSession,
        user_id: UUID,
        role_slug: str,
        tenant_id: UUID | None,
    ) -> list[str]:
        """Return the ordered navigation items visible to a user."""
        nav = navigation_for_role(role_slug)
        if tenant_id is None:
            return nav

        role_override = await db.scalar(
            select(TenantRolePermission.nav_items).where(
                TenantRolePermission.tenant_id == tenant_id,
                TenantRolePermission.role_slug == role_slug,
            )
        )
        if role_override is not None:
            nav = list(role_override)

        user_override = (
            await db.execute(
                select(
                    TenantUserPermission.granted_nav_items,
                    TenantUserPermission.revoked_nav_items,
                ).where(
                    TenantUserPermission.tenant_id == tenant_id,
                    TenantUserPermission.user_id == user_id,
                )
            )
        ).first()
        if user_override is not None:
            granted = user_override.granted_nav_items or []
            revoked = set(user_override.revoked_nav_items or [])
            merged = dict.fromkeys([*nav, *granted])
            nav = [item for item in merged if item not in revoked]
        return nav

    async def list_role_overrides(self, db: AsyncSession, tenant_id: UUID) -> list[RoleNavigation]:
        """Effective navigation for every configurable role in a tenant."""
        result = await db.execute(
            select(TenantRolePermission.role_slug, TenantRolePermission.nav_items).where(
                TenantRolePermission.tenant_id == tenant_id
            )
        )
        overrides = {row.role_slug: list(row.nav_items) for row in result}
        return [
            RoleNavigation(
                role_slug=role_slug,
                nav_items=overrides.get(role_slug, navigation_for_role(role_slug)),
                is_customised=role_slug in overrides,
                default_nav_items=navigation_for_role(role_slug),
            )
            for role_slug in CONFIGURABLE_ROLES
        ]

    async def set_role_override(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        role_slug: str,
        nav_items: list[str],
        updated_by: UUID | None,
    ) -> RoleNavigation:
        """Replace a role's navigation for a tenant; unknown items are dropped."""
        _ensure_configurable(role_slug)
        valid = filter_nav_items(nav_items)
        now = self._clock()
        statement = _upsert(db, TenantRolePermission).values(
            tenant_id=tenant_id,
            role_slug=role_slug,
            nav_items=valid,
            updated_by=updated_by,
            created_at=now,
            updated_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[TenantRolePermission.tenant_id, TenantRolePermission.role_slug],
            set_={"nav_items": valid, "updated_at": now, "updated_by": updated_by},
        )
        try:
            await db.execute(statement)
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        logger.info(
            "role_override_saved",
            tenant_id=str(tenant_id),
            role_slug=role_slug,
            nav_items=valid,
            updated_by=str(updated_by) if updated_by else None,
        )
        return RoleNavigation(
            role_slug=role_slug,
            nav_items=valid,
            is_customised=True,
            default_nav_items=navigation_for_role(role_slug),
        )

    async def reset_role_override(
        self, db: AsyncSession, tenant_id: UUID, role_slug: str
    ) -> RoleNavigation:
        """Delete a role override and return the static defaults."""
        _ensure_configurable(role_slug)
        await db.execute(
            delete(TenantRolePermission).where(
                TenantRolePermission.tenant_id == tenant_id,
                TenantRolePermission.role_slug == role_slug,
            )
        )
        await db.commit()
        logger.info("role_override_reset", tenant_id=str(tenant_id), role_slug=role_slug)
        defaults = navigation_for_role(role_slug)
        return RoleNavigation(
            role_slug=role_slug,
            nav_items=defaults,
            is_customised=False,
            default_nav_items=list(defaults),
        )

    async def list_user_overrides(self, db: AsyncSession, tenant_id: UUID) -> list[UserOverride]:
        """All user overrides in a tenant joined with user display fields."""
        result = await db.execute(
            select(TenantUserPermission, User.email, User.first_name, User.last_name)
            .outerjoin(User, TenantUserPermission.user_id == User.id)
            .where(TenantUserPermission.tenant_id == tenant_id)
            .order_by(TenantUserPermission.created_at)
        )
        return [
            self._to_user_override(row.TenantUserPermission, row.email, row.first_name, row.last_name)
            for row in result
        ]

    async def get_user_override(
        self, db: AsyncSession, tenant_id: UUID, user_id: UUID
    ) -> UserOverride | None:
        row = await self._fetch_user_override(db, tenant_id, user_id)
        return self._to_user_override(row) if row is not None else None

    async def set_user_override(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        user_id: UUID,
        granted_nav_items: list[str],
        revoked_nav_items: list[str],
        updated_by: UUID | None,
    ) -> UserOverride:
        """Store grants and revocations for a user; unknown items are dropped."""
        granted = filter_nav_items(granted_nav_items)
        revoked = filter_nav_items(revoked_nav_items)
        member = await db.execute(
            select(User.id).where(
                User.id == user_id, User.tenant_id == tenant_id, User.deleted_at.is_(None)
            )
        )
        if member.first() is None:
            raise NotFound("User not found.")
        now = self._clock()
        statement = _upsert(db, TenantUserPermission).values(
            tenant_id=tenant_id,
            user_id=user_id,
            granted_nav_items=granted,
            revoked_nav_items=revoked,
            updated_by=updated_by,
            created_at=now,
            updated_at=now,
        )
        statement = statement.on_conflict_do_update(
            index_elements=[TenantUserPermission.tenant_id, TenantUserPermission.user_id],
            set_={
                "granted_nav_items": granted,
                "revoked_nav_items": revoked,
                "updated_at": now,
                "updated_by": updated_by,
            },
        )
        try:
            await db.execute(statement)
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        logger.info(
            "user_override_saved",
            tenant_id=str(tenant_id),
            user_id=str(user_id),
            granted=granted,
            revoked=revoked,
        )
        row = await self._fetch_user_override(db, tenant_id, user_id)
        assert row is not None
        return self._to_user_override(row)

    async def clear_user_override(self, db: AsyncSession, tenant_id: UUID, user_id: UUID) -> None:
        """Remove a user's override; clearing a missing override is a no-op."""
        await db.execute(
            delete(TenantUserPermission).where(
                TenantUserPermission.tenant_id == tenant_id,
                TenantUserPermission.user_id == user_id,
            )
        )
        await db.commit()
        logger.info("user_override_cleared", tenant_id=str(tenant_id), user_id=str(user_id))

    async def _fetch_user_override(
        self, db: AsyncSession, tenant_id: UUID, user_id: UUID
    ) -> TenantUserPermission | None:
        result = await db.execute(
            select(TenantUserPermission)
            .where(
                TenantUserPermission.tenant_id == tenant_id,
                TenantUserPermission.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _to_user_override(
        row: TenantUserPermission,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> UserOverride:
        return UserOverride(
            id=row.id,
            tenant_id=row.tenant_id,
            user_id=row.user_id,
            granted_nav_items=list(row.granted_nav_items or []),
            revoked_nav_items=list(row.revoked_nav_items or []),
            updated_at=row.updated_at,
            email=email,
            first_name=first_name,
            last_name=last_name,
        )
