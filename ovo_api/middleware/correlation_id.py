"""Request correlation ids for log stitching across services."""

from __future__ import annotations

from uuid import uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

CORRELATION_ID_HEADER = "X-Correlation-ID"
_MAX_INBOUND_LENGTH = 128


def resolve_correlation_id(raw_value: str | None) -> str:
    """Reuse a caller-supplied id when it is printable and short, else mint one."""
    candidate = (raw_value or "").strip()
    if 0 < len(candidate) <= _MAX_INBOUND_LENGTH and candidate.isprintable():
        return candidate
    return str(uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Expose the id on ``request.state``, in log context, and on the response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        request.state.correlation_id = correlation_id
        with structlog.contextvars.bound_contextvars(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
