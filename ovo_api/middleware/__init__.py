"""Middleware package exports."""

from ovo_api.middleware.correlation_id import CorrelationIdMiddleware
from ovo_api.middleware.logging import LoggingMiddleware
from ovo_api.middleware.rate_limit import RateLimitMiddleware
from ovo_api.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "CorrelationIdMiddleware",
    "LoggingMiddleware",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
]
