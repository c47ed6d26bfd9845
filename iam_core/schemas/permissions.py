"""Navigation override request and response schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class NavigationResponse(BaseModel):
    nav_items: list[str]


class RoleNavigationResponse(BaseModel):
    role_slug: str
    nav_items: list[str]
    is_customised: bool
    default_nav_items: list[str]


class RoleOverrideRequest(BaseModel):
    nav_items: list[str] = Field(max_length=64)


class UserOverrideRequest(BaseModel):
    granted_nav_items: list[str] = Field(default_factory=list, max_length=64)
    revoked_nav_items: list[str] = Field(default_factory=list, max_length=64)


class UserOverrideResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    user_id: UUID
    granted_nav_items: list[str]
    revoked_nav_items: list[str]
    updated_at: datetime | None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class SuccessResponse(BaseModel):
    success: bool = True
