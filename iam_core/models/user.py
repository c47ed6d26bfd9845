"""User and role assignment ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from iam_core.db.base import Base, TimestampMixin, UTCDateTime


class User(Base, TimestampMixin):
    """Account belonging to either an agency or a single tenant."""

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_email_deleted_at", "email", "deleted_at"),)

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    agency_id: Mapped[UUID | None] = mapped_column(
        Uuid(), ForeignKey("agencies.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    roles: Mapped[list[UserRole]] = relationship(
        back_populates="user", order_by="UserRole.id", lazy="raise"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


class UserRole(Base):
    """Assignment of one static role slug to a user, kept in assignment order."""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_slug", name="uq_user_roles_user_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role_slug: Mapped[str] = mapped_column(String(50), nullable=False)

    user: Mapped[User] = relationship(back_populates="roles")
