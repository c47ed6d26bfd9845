"""Impersonation request and response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class StartImpersonationRequest(BaseModel):
    """Start impersonation payload; duration bounds are enforced by configuration."""

    target_user_id: UUID
    reason: str | None = Field(default=None, max_length=500)
    duration_minutes: int | None = Field(default=None, ge=1)


class ImpersonatedUserResponse(BaseModel):
    id: UUID
    email: str
    first_name: str
    last_name: str


class StartImpersonationResponse(BaseModel):
    impersonation_id: UUID
    token: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    expires_at: datetime
    target_user: ImpersonatedUserResponse


class ImpersonationSessionResponse(BaseModel):
    id: UUID
    expires_at: datetime
    reason: str | None


class ImpersonationStatusResponse(BaseModel):
    is_impersonating: bool
    session: ImpersonationSessionResponse | None = None
    admin_user: ImpersonatedUserResponse | None = None
    target_user: ImpersonatedUserResponse | None = None


class EndImpersonationResponse(BaseModel):
    success: bool = True
    ended: bool


class ScopedTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ImpersonationHistoryItem(BaseModel):
    id: UUID
    admin_user_id: UUID
    target_user_id: UUID
    reason: str | None
    created_at: datetime
    expires_at: datetime
    ended_at: datetime | None
