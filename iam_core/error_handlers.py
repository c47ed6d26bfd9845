"""Global exception handlers enforcing API error response contracts."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from iam_core.core.rate_limit import extract_client_ip
from iam_core.errors import IAMError, RateLimited

VALID_ERROR_CODES = {
    "unauthenticated",
    "invalid_credentials",
    "forbidden",
    "not_found",
    "invalid_request",
    "conflict",
    "rate_limited",
    "service_unavailable",
    "internal_error",
}

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "invalid_request",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "invalid_request",
    409: "conflict",
    422: "invalid_request",
    429: "rate_limited",
    503: "service_unavailable",
}

logger = structlog.get_logger(__name__)


def _error_response(
    status_code: int, detail: str, code: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    """Build standardized JSON error payload."""
    return JSONResponse(
        status_code=status_code, content={"detail": detail, "code": code}, headers=headers
    )


def iam_error_response(
    exc: IAMError, detail: str | None = None, headers: dict[str, str] | None = None
) -> JSONResponse:
    """Render a service error as the contract payload; rate limits carry Retry-After."""
    merged = dict(headers or {})
    if isinstance(exc, RateLimited):
        merged["Retry-After"] = str(exc.retry_after)
    return _error_response(exc.status_code, detail or exc.detail, exc.code, headers=merged or None)


def _resolve_error_code(status_code: int, raw_code: str | None) -> str:
    """Resolve a valid machine-readable error code."""
    if raw_code in VALID_ERROR_CODES:
        return raw_code
    return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "internal_error")


def _extract_detail_and_code(detail: Any) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", "Request failed.")
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str):
        return detail, None
    return "Request failed.", None


def _sanitize_detail(detail: str, status_code: int, environment: str) -> str:
    """Hide internal failure details outside development."""
    if environment != "development" and status_code >= 500:
        return "Internal server error."
    return detail


def _correlation_id(request: Request) -> str:
    return getattr(
        request.state,
        "correlation_id",
        request.headers.get("x-correlation-id", "unknown"),
    )


def _log_auth_failure(request: Request, status_code: int, detail: str, code: str) -> None:
    """Emit WARNING-level log for authentication and authorization failures."""
    if status_code not in (401, 403):
        return
    identity = getattr(request.state, "identity", None)
    logger.warning(
        "auth_failure",
        correlation_id=_correlation_id(request),
        event_type="auth_failure",
        user_id=getattr(identity, "user_id", None) and str(identity.user_id),
        ip_address=extract_client_ip(request.headers),
        success=False,
        status_code=status_code,
        code=code,
        detail=detail,
        path=request.url.path,
        method=request.method,
    )


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing error shape contract."""

    @app.exception_handler(IAMError)
    async def handle_iam_error(request: Request, exc: IAMError) -> JSONResponse:
        """Translate service errors into contract payloads."""
        detail = _sanitize_detail(exc.detail, exc.status_code, environment)
        _log_auth_failure(request, exc.status_code, detail, exc.code)
        return iam_error_response(exc, detail=detail)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to contract payload."""
        raw_detail, raw_code = _extract_detail_and_code(exc.detail)
        code = _resolve_error_code(exc.status_code, raw_code)
        _log_auth_failure(request, exc.status_code, raw_detail, code)
        return _error_response(status_code=exc.status_code, detail=raw_detail, code=code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to standardized payload."""
        detail = "Invalid request payload."
        if environment == "development":
            errors = exc.errors()
            if errors:
                detail = f"Invalid request payload: {errors[0].get('msg', 'validation error')}."
        return _error_response(status_code=422, detail=detail, code="invalid_request")

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors and enforce contract payload."""
        logger.error(
            "unhandled_exception",
            correlation_id=_correlation_id(request),
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        detail = _sanitize_detail(str(exc), 500, environment)
        return _error_response(status_code=500, detail=detail, code="internal_error")
