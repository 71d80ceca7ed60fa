"""Liveness and readiness probes for the credential store backends."""

from __future__ import annotations

import asyncio
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ovo_api.db.redis import get_redis_client
from ovo_api.db.session import get_engine
from ovo_api.error_handlers import error_response

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)

# A hung backend must not hold the probe past the orchestrator's own timeout.
_PROBE_TIMEOUT_SECONDS = 2.0


async def check_postgres_ready() -> bool:
    """Round-trip ``SELECT 1`` through the pooled engine."""
    try:
        async with asyncio.timeout(_PROBE_TIMEOUT_SECONDS):
            async with get_engine().connect() as connection:
                await connection.scalar(text("SELECT 1"))
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        logger.warning("readiness_check_failed", backend="postgres", error_type=type(exc).__name__)
        return False
    return True


async def check_redis_ready() -> bool:
    """PING the shared Redis client used by the rate limiter."""
    try:
        async with asyncio.timeout(_PROBE_TIMEOUT_SECONDS):
            pong = await get_redis_client().ping()
    except (RedisError, OSError, TimeoutError) as exc:
        logger.warning("readiness_check_failed", backend="redis", error_type=type(exc).__name__)
        return False
    return bool(pong)


@router.get("/live")
async def live() -> dict[str, str]:
    return {"status": "live"}


@router.get("/ready", response_model=None)
async def ready(
    postgres_ready: Annotated[bool, Depends(check_postgres_ready)],
    redis_ready: Annotated[bool, Depends(check_redis_ready)],
) -> dict[str, object] | JSONResponse:
    """Report per-backend status; any unreachable backend fails the probe."""
    checks = {"postgres": postgres_ready, "redis": redis_ready}
    down = sorted(name for name, healthy in checks.items() if not healthy)
    if down:
        return error_response(
            status_code=503,
            message="Service not ready",
            code="service_unavailable",
            errors={name: ["unreachable"] for name in down},
        )
    return {"status": "ready", "checks": {name: "up" for name in checks}}
