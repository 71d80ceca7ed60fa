"""Response hardening headers for a JSON-only API."""

from __future__ import annotations

from fastapi import Request
from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# The API never serves documents, so nothing may be framed, sniffed, or embedded.
BASELINE_HEADERS: tuple[tuple[str, str], ...] = (
    ("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"),
    ("Referrer-Policy", "no-referrer"),
    ("Strict-Transport-Security", "max-age=63072000; includeSubDomains"),
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
)


def _carries_credentials(path: str) -> bool:
    """Auth responses hold tokens or raw keys and must never be cached."""
    return "/auth/" in path or "/keys" in path


def apply_security_headers(headers: MutableHeaders, path: str) -> None:
    """Fill in missing hardening headers; route-set values win."""
    for name, value in BASELINE_HEADERS:
        headers.setdefault(name, value)
    if _carries_credentials(path):
        headers["Cache-Control"] = "no-store"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp hardening headers onto every response, errors included."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        apply_security_headers(response.headers, request.url.path)
        return response
