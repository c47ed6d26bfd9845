"""HS256 access/refresh token issuance and verification."""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

import structlog
from jose import jwt
from jose.exceptions import JWTError
from jose.utils import base64url_decode, base64url_encode

TokenType = Literal["access", "refresh"]
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TTL_SECONDS = 15 * 60
REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
ClaimsT = TypeVar("ClaimsT")


def _utc_clock() -> datetime:
    return datetime.now(UTC)


def _is_canonical_signature(segment: str) -> bool:
    """Reject signature encodings whose unused trailing bits are set."""
    try:
        raw = base64url_decode(segment.encode("ascii"))
    except ValueError:
        return False
    return hmac.compare_digest(base64url_encode(raw), segment.encode("ascii"))


class TokenConfigurationError(ValueError):
    """Raised at construction when signing secrets are unusable."""


class TokenFailure(str, Enum):
    """Internal reason a token was rejected; never returned to callers over HTTP."""

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    WRONG_TYPE = "wrong_type"
    INVALID_CLAIMS = "invalid_claims"


@dataclass(frozen=True)
class ImpersonatorRef:
    """Administrator identity carried by an impersonation-scoped token."""

    user_id: str
    session_id: str


@dataclass(frozen=True)
class AccessClaims:
    """Identity snapshot embedded in an access token."""

    sub: str
    sid: str
    email: str
    role_slug: str
    role_level: int
    permissions: tuple[str, ...] = ()
    tenant_id: str | None = None
    agency_id: str | None = None
    impersonated_by: ImpersonatorRef | None = None
    iat: int | None = None
    exp: int | None = None

    @property
    def is_impersonation(self) -> bool:
        return self.impersonated_by is not None


@dataclass(frozen=True)
class RefreshClaims:
    """Claims embedded in a refresh token."""

    sub: str
    sid: str
    jti: str
    iat: int | None = None
    exp: int | None = None


@dataclass(frozen=True)
class TokenVerification(Generic[ClaimsT]):
    """Outcome of verifying one token: claims on success, a failure reason otherwise."""

    claims: ClaimsT | None = None
    failure: TokenFailure | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.claims is not None


class TokenService:
    """Mint and verify HS256 access and refresh tokens with independent secrets."""

    def __init__(
        self,
        access_secret: str | None,
        refresh_secret: str | None,
        access_ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
        refresh_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS,
        clock: Clock = _utc_clock,
    ) -> None:
        if not access_secret or not access_secret.strip():
            raise TokenConfigurationError("Access token secret is not configured.")
        if not refresh_secret or not refresh_secret.strip():
            raise TokenConfigurationError("Refresh token secret is not configured.")
        if hmac.compare_digest(access_secret.encode("utf-8"), refresh_secret.encode("utf-8")):
            raise TokenConfigurationError("Access and refresh secrets must differ.")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._access_ttl_seconds = access_ttl_seconds
        self._refresh_ttl_seconds = refresh_ttl_seconds
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return self._access_ttl_seconds

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._refresh_ttl_seconds

    def issue_access(self, claims: AccessClaims) -> str:
        """Sign an access token; type, iat and exp are always stamped here."""
        issued_at = self._now_epoch()
        payload: dict[str, Any] = {
            "sub": claims.sub,
            "sid": claims.sid,
            "email": claims.email,
            "tenant_id": claims.tenant_id,
            "agency_id": claims.agency_id,
            "role_slug": claims.role_slug,
            "role_level": claims.role_level,
            "permissions": list(claims.permissions),
            "type": "access",
            "iat": issued_at,
            "exp": issued_at + self._access_ttl_seconds,
        }
        if claims.impersonated_by is not None:
            payload["impersonated_by"] = {
                "user_id": claims.impersonated_by.user_id,
                "session_id": claims.impersonated_by.session_id,
            }
        return jwt.encode(payload, self._access_secret, algorithm=JWT_ALGORITHM)

    def issue_refresh(self, user_id: str, session_id: str, jti: str | None = None) -> str:
        """Sign a refresh token bound to one session."""
        issued_at = self._now_epoch()
        payload = {
            "sub": user_id,
            "sid": session_id,
            "jti": jti or secrets.token_hex(16),
            "type": "refresh",
            "iat": issued_at,
            "exp": issued_at + self._refresh_ttl_seconds,
        }
        return jwt.encode(payload, self._refresh_secret, algorithm=JWT_ALGORITHM)

    def verify_access(self, token: str) -> TokenVerification[AccessClaims]:
        """Verify an access token without raising for bad input."""
        payload, failure = self._decode(token, self._access_secret, "access")
        if payload is None:
            return self._reject("access", failure)
        claims = self._access_claims_from_payload(payload)
        if claims is None:
            return self._reject("access", TokenFailure.INVALID_CLAIMS)
        return TokenVerification(claims=claims)

    def verify_refresh(self, token: str) -> TokenVerification[RefreshClaims]:
        """Verify a refresh token without raising for bad input."""
        payload, failure = self._decode(token, self._refresh_secret, "refresh")
        if payload is None:
            return self._reject("refresh", failure)
        sub, sid, jti = payload.get("sub"), payload.get("sid"), payload.get("jti")
        if not all(isinstance(value, str) and value for value in (sub, sid, jti)):
            return self._reject("refresh", TokenFailure.INVALID_CLAIMS)
        return TokenVerification(
            claims=RefreshClaims(sub=sub, sid=sid, jti=jti, iat=payload["iat"], exp=payload["exp"])
        )

    def _decode(
        self, token: str, secret: str, expected_type: TokenType
    ) -> tuple[dict[str, Any] | None, TokenFailure | None]:
        """Decode and check signature, type and expiry against the injected clock."""
        if not isinstance(token, str) or token.count(".") != 2:
            return None, TokenFailure.MALFORMED
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError:
            return None, TokenFailure.MALFORMED
        if not hmac.compare_digest(str(header.get("alg", "")), JWT_ALGORITHM):
            return None, TokenFailure.MALFORMED
        if not _is_canonical_signature(token.rsplit(".", 1)[1]):
            return None, TokenFailure.BAD_SIGNATURE

        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_aud": False,
                    "verify_exp": False,
                    "verify_nbf": False,
                    "require_iat": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except JWTError:
            return None, TokenFailure.BAD_SIGNATURE

        token_type = payload.get("type")
        if not isinstance(token_type, str) or not hmac.compare_digest(token_type, expected_type):
            return None, TokenFailure.WRONG_TYPE
        expires_at = payload.get("exp")
        issued_at = payload.get("iat")
        if not isinstance(expires_at, int) or not isinstance(issued_at, int):
            return None, TokenFailure.INVALID_CLAIMS
        if expires_at <= self._now_epoch():
            return None, TokenFailure.EXPIRED
        return payload, None

    @staticmethod
    def _access_claims_from_payload(payload: dict[str, Any]) -> AccessClaims | None:
        """Rebuild typed claims, rejecting payloads with missing or mistyped fields."""
        sub, sid, email = payload.get("sub"), payload.get("sid"), payload.get("email")
        role_slug, role_level = payload.get("role_slug"), payload.get("role_level")
        permissions = payload.get("permissions")
        if not all(isinstance(value, str) and value for value in (sub, sid, role_slug)):
            return None
        if not isinstance(email, str) or not isinstance(role_level, int):
            return None
        if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
            return None
        tenant_id, agency_id = payload.get("tenant_id"), payload.get("agency_id")
        if not isinstance(tenant_id, str | None) or not isinstance(agency_id, str | None):
            return None

        impersonated_by = None
        raw_impersonator = payload.get("impersonated_by")
        if raw_impersonator is not None:
            if not isinstance(raw_impersonator, dict):
                return None
            admin_user_id = raw_impersonator.get("user_id")
            admin_session_id = raw_impersonator.get("session_id")
            if not isinstance(admin_user_id, str) or not isinstance(admin_session_id, str):
                return None
            impersonated_by = ImpersonatorRef(user_id=admin_user_id, session_id=admin_session_id)

        return AccessClaims(
            sub=sub,
            sid=sid,
            email=email,
            role_slug=role_slug,
            role_level=role_level,
            permissions=tuple(permissions),
            tenant_id=tenant_id,
            agency_id=agency_id,
            impersonated_by=impersonated_by,
            iat=payload["iat"],
            exp=payload["exp"],
        )

    def _reject(self, kind: TokenType, failure: TokenFailure | None) -> TokenVerification[Any]:
        reason = failure or TokenFailure.MALFORMED
        logger.info("token_rejected", token_type=kind, reason=reason.value)
        return TokenVerification(claims=None, failure=reason)

    def _now_epoch(self) -> int:
        return int(self._clock().timestamp())
