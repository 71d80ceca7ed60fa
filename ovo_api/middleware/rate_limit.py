"""Redis-backed sliding-window rate limiting middleware."""

from __future__ import annotations

import math
import time
from typing import Protocol
from uuid import uuid4

import structlog
from fastapi import Request
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from ovo_api.config import get_settings
from ovo_api.db.redis import get_redis_client
from ovo_api.services.audit_service import extract_client_ip

logger = structlog.get_logger(__name__)
_WINDOW_SECONDS = 60
_LOGIN_PATHS = ("/auth/login", "/auth/register")
_TOKEN_PATHS = ("/auth/refresh",)
_EXEMPT_PATHS = ("/health/live", "/health/ready")


class SlidingWindowRedis(Protocol):
    """Protocol for Redis operations used by the rate limiter."""

    async def zremrangebyscore(self, key: str, min: str | int, max: int) -> int:
        """Delete members with score inside an inclusive range."""

    async def zcard(self, key: str) -> int:
        """Return sorted-set cardinality."""

    async def zadd(self, key: str, mapping: dict[str, int]) -> int:
        """Add one or more scored members to sorted set."""

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Apply TTL to key."""


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-client sliding-window request limits."""

    def __init__(
        self,
        app,
        redis_client: SlidingWindowRedis | None = None,
        default_requests_per_minute: int | None = None,
        login_requests_per_minute: int | None = None,
        token_requests_per_minute: int | None = None,
    ) -> None:
        """Initialize middleware with optional explicit limits for testability."""
        super().__init__(app)
        self._redis_client = redis_client
        self._default_limit = default_requests_per_minute
        self._login_limit = login_requests_per_minute
        self._token_limit = token_requests_per_minute
        self._window_milliseconds = _WINDOW_SECONDS * 1000

    async def dispatch(self, request: Request, call_next) -> Response:
        """Reject requests exceeding the configured per-minute threshold."""
        path = request.url.path.rstrip("/")
        if path.endswith(_EXEMPT_PATHS):
            return await call_next(request)

        limit = self._resolve_limit(path)
        bucket_key = self._build_bucket_key(request, path)
        now_ms = int(time.time() * 1000)
        window_start = now_ms - self._window_milliseconds

        try:
            redis_client = self._resolve_redis()
            await redis_client.zremrangebyscore(bucket_key, "-inf", window_start)
            current_count = await redis_client.zcard(bucket_key)
            if current_count >= limit:
                return JSONResponse(
                    status_code=429,
                    content={
                        "success": False,
                        "message": "Too many requests, please try again later",
                        "code": "rate_limited",
                    },
                    headers={"Retry-After": str(_WINDOW_SECONDS)},
                )

            member = f"{now_ms}:{uuid4()}"
            await redis_client.zadd(bucket_key, {member: now_ms})
            await redis_client.expire(bucket_key, math.ceil(self._window_milliseconds / 1000) + 1)
        except (RedisError, OSError):
            # Redis outages must not take authentication down with them.
            logger.warning(
                "rate_limit_backend_unavailable",
                path=request.url.path,
                method=request.method,
            )

        return await call_next(request)

    def _resolve_redis(self) -> SlidingWindowRedis:
        """Return the injected client or the shared application client."""
        if self._redis_client is None:
            self._redis_client = get_redis_client()
        return self._redis_client

    def _resolve_limit(self, path: str) -> int:
        """Resolve path-specific limit override."""
        if path.endswith(_LOGIN_PATHS):
            if self._login_limit is None:
                self._login_limit = get_settings().rate_limit.login_requests_per_minute
            return self._login_limit
        if path.endswith(_TOKEN_PATHS):
            if self._token_limit is None:
                self._token_limit = get_settings().rate_limit.token_requests_per_minute
            return self._token_limit
        if self._default_limit is None:
            self._default_limit = get_settings().rate_limit.default_requests_per_minute
        return self._default_limit

    def _build_bucket_key(self, request: Request, path: str) -> str:
        """Build Redis key using route and caller network identity."""
        client_id = extract_client_ip(request) or "unknown"
        return f"rate_limit:{path}:{client_id}"
