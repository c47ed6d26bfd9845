"""Agency and tenant ORM models."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from iam_core.db.base import Base, TimestampMixin


class Agency(Base, TimestampMixin):
    """Top-level organisation that owns client tenants."""

    __tablename__ = "agencies"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Tenant(Base, TimestampMixin):
    """Client organisation belonging to exactly one agency."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    agency_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("agencies.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
