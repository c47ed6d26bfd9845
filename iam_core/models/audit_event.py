"""Immutable audit event ORM model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Index, String, Text, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from iam_core.db.base import Base, JSONType, UTCDateTime


class AuditActorType(str, Enum):
    """Allowed actor types for audit events."""

    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


def _actor_type_values(enum_cls: type[AuditActorType]) -> list[str]:
    """Store enum values instead of enum member names."""
    return [member.value for member in enum_cls]


class AuditEvent(Base):
    """Append-only audit event record for auth and security actions."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type_created_at", "event_type", "created_at"),
        Index("ix_audit_events_actor_id_created_at", "actor_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        SAEnum(
            AuditActorType,
            name="audit_actor_type",
            values_callable=_actor_type_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    impersonator_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    target_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[UUID | None] = mapped_column(Uuid(), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, server_default=func.now()
    )
