"""Async Redis client factory."""

from __future__ import annotations

from functools import lru_cache

from redis import asyncio as redis_async
from redis.asyncio.client import Redis

from ovo_api.config import get_settings


@lru_cache
def get_redis_client() -> Redis:
    """Create and cache the Redis client used for rate limiting and readiness."""
    settings = get_settings()
    return redis_async.from_url(
        settings.redis.url,
        decode_responses=True,
        socket_connect_timeout=2.0,
        socket_timeout=2.0,
    )


async def close_redis_client() -> None:
    """Close pooled Redis connections when a client has been created."""
    if get_redis_client.cache_info().currsize:
        await get_redis_client().aclose()
