"""Authentication request and response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Password login request payload."""

    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)
    device_info: dict[str, Any] | None = None


class RefreshTokenRequest(BaseModel):
    """Refresh token request payload."""

    refresh_token: str = Field(min_length=16)


class LogoutAllRequest(BaseModel):
    """Options for revoking every session of the caller."""

    include_current: bool = False


class UserSummaryResponse(BaseModel):
    """Identity summary returned alongside issued tokens."""

    id: UUID
    email: str
    first_name: str
    last_name: str
    tenant_id: UUID | None
    agency_id: UUID | None
    role_slug: str
    role_level: int
    permissions: list[str]


class TokenPairResponse(BaseModel):
    """Access/refresh token response payload."""

    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    user: UserSummaryResponse


class LogoutAllResponse(BaseModel):
    revoked_count: int


class ImpersonatorResponse(BaseModel):
    user_id: UUID
    session_id: UUID


class MeResponse(BaseModel):
    """Caller identity as asserted by the verified access token."""

    user_id: UUID
    session_id: UUID
    email: str
    tenant_id: UUID | None
    agency_id: UUID | None
    role_slug: str
    role_level: int
    permissions: list[str]
    impersonated_by: ImpersonatorResponse | None = None


class SessionResponse(BaseModel):
    """One live session of the caller."""

    id: UUID
    created_at: datetime
    last_active_at: datetime
    expires_at: datetime
    user_agent: str | None
    ip_address: str | None
    device_info: dict[str, Any] | None
    is_current: bool


class RevokeSessionsResponse(BaseModel):
    revoked_count: int
