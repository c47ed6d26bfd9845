"""Tenant navigation override ORM models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from iam_core.db.base import Base, JSONType, TimestampMixin


class TenantRolePermission(Base, TimestampMixin):
    """Per-tenant replacement of a role's default navigation items."""

    __tablename__ = "tenant_role_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "role_slug", name="uq_tenant_role_permissions_tenant_role"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    role_slug: Mapped[str] = mapped_column(String(50), nullable=False)
    nav_items: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    updated_by: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class TenantUserPermission(Base, TimestampMixin):
    """Per-user grants and revocations layered on top of the role navigation."""

    __tablename__ = "tenant_user_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_user_permissions_tenant_user"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    granted_nav_items: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    revoked_nav_items: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    updated_by: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
