"""Authenticated request identity derived from a verified access token."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from iam_core.core.tokens import AccessClaims, ImpersonatorRef


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Caller identity; ``session_id`` is the impersonation id for impersonated requests."""

    user_id: UUID
    session_id: UUID
    email: str
    role_slug: str
    role_level: int
    permissions: frozenset[str]
    tenant_id: UUID | None = None
    agency_id: UUID | None = None
    impersonated_by: ImpersonatorRef | None = None

    @property
    def is_impersonating(self) -> bool:
        return self.impersonated_by is not None

    @property
    def impersonator_id(self) -> UUID | None:
        if self.impersonated_by is None:
            return None
        return UUID(self.impersonated_by.user_id)

    @classmethod
    def from_claims(cls, claims: AccessClaims) -> AuthenticatedIdentity:
        """Build an identity from verified claims; raises ValueError on malformed ids."""
        return cls(
            user_id=UUID(claims.sub),
            session_id=UUID(claims.sid),
            email=claims.email,
            role_slug=claims.role_slug,
            role_level=claims.role_level,
            permissions=frozenset(claims.permissions),
            tenant_id=UUID(claims.tenant_id) if claims.tenant_id else None,
            agency_id=UUID(claims.agency_id) if claims.agency_id else None,
            impersonated_by=claims.impersonated_by,
        )
