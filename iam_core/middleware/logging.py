"""Structured request logging middleware with credential redaction."""

from __future__ import annotations

from time import perf_counter
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from iam_core.core.rate_limit import extract_client_ip

SENSITIVE_KEYS = {
    "access_token",
    "authorization",
    "cookie",
    "password",
    "refresh_token",
    "set-cookie",
    "token",
    "x-impersonation-token",
}
REDACTED = "***REDACTED***"

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    if normalized in SENSITIVE_KEYS or key.lower() in SENSITIVE_KEYS:
        return True
    return "token" in normalized or "password" in normalized or "secret" in normalized


def _redact_mapping(values: dict[str, Any]) -> dict[str, Any]:
    """Redact sensitive values from a dictionary."""
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if _is_sensitive_key(key):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = _redact_mapping(value)
        elif isinstance(value, list):
            redacted[key] = [
                _redact_mapping(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def _identity_fields(request: Request) -> dict[str, str | None]:
    """Caller and impersonator ids once authentication has run."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        return {"user_id": None, "impersonator_id": None}
    impersonator_id = identity.impersonator_id
    return {
        "user_id": str(identity.user_id),
        "impersonator_id": str(impersonator_id) if impersonator_id else None,
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured log per request with redacted metadata."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = perf_counter()
        query_params = _redact_mapping(dict(request.query_params.items()))
        client_ip = extract_client_ip(request.headers)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                method=request.method,
                path=request.url.path,
                query_params=query_params,
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                client_ip=client_ip,
                user_agent=request.headers.get("user-agent", ""),
                **_identity_fields(request),
            )
            raise

        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            method=request.method,
            path=request.url.path,
            query_params=query_params,
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            client_ip=client_ip,
            user_agent=request.headers.get("user-agent", ""),
            **_identity_fields(request),
        )
        return response
