"""Per-request structured logging with credential redaction."""

from __future__ import annotations

from time import perf_counter
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ovo_api.services.audit_service import extract_client_ip

# Exact keys; OAuth callbacks carry the authorization code and signed state.
SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "authorization",
        "code",
        "code_verifier",
        "cookie",
        "set_cookie",
        "state",
    }
)
_SENSITIVE_FRAGMENTS = ("token", "password", "secret")
REDACTED = "***REDACTED***"

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace("-", "_")
    return normalized in SENSITIVE_KEYS or any(
        fragment in normalized for fragment in _SENSITIVE_FRAGMENTS
    )


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_mapping(value)
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


def redact_mapping(values: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``values`` with credential-bearing entries masked at any depth."""
    return {
        key: REDACTED if _is_sensitive_key(key) else _redact_value(value)
        for key, value in values.items()
    }


def _caller_fields(request: Request) -> dict[str, str | None]:
    """Describe the caller resolved by the bearer gate, if any."""
    identity = getattr(request.state, "user", None)
    user_id = getattr(identity, "user_id", None)
    return {
        "user_id": str(user_id) if user_id else None,
        "credential_type": getattr(identity, "type", None),
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one ``request_completed`` event per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        """Time the request and log its outcome without credential values."""
        start = perf_counter()
        fields: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query_params": redact_mapping(dict(request.query_params.items())),
            "client_ip": extract_client_ip(request) or "unknown",
            "user_agent": request.headers.get("user-agent", ""),
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                **fields,
            )
            raise

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            **fields,
            **_caller_fields(request),
        )
        return response
