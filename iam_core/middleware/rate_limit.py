"""Sliding-window rate limiting middleware for issuance endpoints and general traffic."""

from __future__ import annotations

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from iam_core.core.rate_limit import RateLimitDecision, SlidingWindowRateLimiter, extract_client_ip
from iam_core.error_handlers import iam_error_response
from iam_core.errors import RateLimited

logger = structlog.get_logger(__name__)

AUTH_LIMITED_PATHS = frozenset({"/auth/login", "/auth/refresh", "/admin/impersonate"})
_EXEMPT_PREFIXES = ("/health", "/metrics")


def _rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after)
    return headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client sliding-window limits, stricter on credential issuance."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path.rstrip("/") or "/"
        if path.startswith(_EXEMPT_PREFIXES):
            return await call_next(request)

        container = request.app.state.container
        client_ip = extract_client_ip(request.headers)
        limiters: list[SlidingWindowRateLimiter] = [container.global_rate_limiter]
        if request.method == "POST" and path in AUTH_LIMITED_PATHS:
            limiters.append(container.auth_rate_limiter)

        decision: RateLimitDecision | None = None
        for limiter in limiters:
            decision = await limiter.hit(client_ip)
            if not decision.allowed:
                container.metrics.record_rate_limited(limiter.namespace)
                logger.warning(
                    "rate_limit_exceeded",
                    namespace=limiter.namespace,
                    client_ip=client_ip,
                    path=path,
                    retry_after=decision.retry_after,
                )
                return iam_error_response(
                    RateLimited(retry_after=decision.retry_after),
                    headers=_rate_limit_headers(decision),
                )

        response = await call_next(request)
        if decision is not None:
            response.headers.update(_rate_limit_headers(decision))
        return response
