"""Service-level error taxonomy mapped onto the ``{"detail", "code"}`` envelope."""

from __future__ import annotations


class IAMError(Exception):
    """Base error carrying an HTTP status and a machine-readable code."""

    status_code = 500
    code = "internal_error"
    default_detail = "Internal server error."

    def __init__(self, detail: str | None = None, code: str | None = None) -> None:
        self.detail = detail or self.default_detail
        if code is not None:
            self.code = code
        super().__init__(self.detail)


class Unauthenticated(IAMError):
    """Missing, invalid or expired credentials; detail is deliberately uniform."""

    status_code = 401
    code = "unauthenticated"
    default_detail = "Authentication required."

    def __init__(self) -> None:
        super().__init__()


class InvalidCredentials(IAMError):
    status_code = 401
    code = "invalid_credentials"
    default_detail = "Invalid email or password."


class Forbidden(IAMError):
    status_code = 403
    code = "forbidden"
    default_detail = "Insufficient permissions."


class NotFound(IAMError):
    status_code = 404
    code = "not_found"
    default_detail = "Resource not found."


class BadRequest(IAMError):
    status_code = 400
    code = "invalid_request"
    default_detail = "Invalid request."


class Conflict(IAMError):
    status_code = 409
    code = "conflict"
    default_detail = "Resource conflict."


class RateLimited(IAMError):
    status_code = 429
    code = "rate_limited"
    default_detail = "Rate limit exceeded."

    def __init__(self, retry_after: int, detail: str | None = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class ServiceUnavailable(IAMError):
    status_code = 503
    code = "service_unavailable"
    default_detail = "Service not ready."
