"""Middleware package exports."""

from iam_core.middleware.correlation_id import CorrelationIdMiddleware
from iam_core.middleware.logging import LoggingMiddleware
from iam_core.middleware.metrics import MetricsMiddleware, MetricsRegistry, metrics_endpoint
from iam_core.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "LoggingMiddleware",
    "MetricsMiddleware",
    "MetricsRegistry",
    "RateLimitMiddleware",
    "metrics_endpoint",
]
