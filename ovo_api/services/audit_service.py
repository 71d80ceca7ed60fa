"""Structured authentication event logging."""

from __future__ import annotations

import ipaddress
import re
from functools import lru_cache
from typing import Any
from uuid import UUID

import structlog
from fastapi import Request

logger = structlog.get_logger("ovo_api.audit")

_REDACTED = "***REDACTED***"
_SENSITIVE_KEY_PARTS = (
    "api_key",
    "apikey",
    "authorization",
    "code_verifier",
    "cookie",
    "email",
    "password",
    "secret",
    "token",
)
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_sensitive_key(key: str) -> bool:
    """Return True when metadata key likely contains sensitive data."""
    normalized = key.strip().lower().replace("-", "_")
    return any(part in normalized for part in _SENSITIVE_KEY_PARTS)


def _is_email_like(value: str) -> bool:
    """Return True when value appears to be an email address."""
    return bool(_EMAIL_PATTERN.match(value.strip()))


def _coerce_ip(value: str | None) -> str | None:
    """Normalize IP address strings to canonical values."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def extract_client_ip(request: Request) -> str | None:
    """Extract canonical client IP from forwarding headers or peer address."""
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        parsed = _coerce_ip(forwarded_for.split(",")[0].strip())
        if parsed is not None:
            return parsed

    client = request.client
    if client is None:
        return None
    return _coerce_ip(client.host)


def _sanitize_value(value: Any) -> Any:
    """Coerce values to JSON-safe primitives with PII redaction."""
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, str):
        return _REDACTED if _is_email_like(value) else value
    if isinstance(value, dict):
        return sanitize_metadata(value)
    if isinstance(value, list):
        return [_sanitize_value(item) for item in value]
    return str(value)


def sanitize_metadata(metadata: dict[str, Any] | None) -> dict[str, Any] | None:
    """Redact sensitive fields and email-like values from event metadata."""
    if metadata is None:
        return None
    sanitized: dict[str, Any] = {}
    for key, value in metadata.items():
        if _is_sensitive_key(key):
            sanitized[key] = _REDACTED
            continue
        sanitized[key] = _sanitize_value(value)
    return sanitized or None


class AuditService:
    """Emit authentication events to the structured log stream."""

    def emit_auth_event(
        self,
        event_type: str,
        success: bool,
        request: Request,
        actor_id: str | UUID | None = None,
        target_id: str | UUID | None = None,
        failure_reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log one auth event; secrets and email addresses never reach the log."""
        fields: dict[str, Any] = {
            "event_type": event_type.strip(),
            "success": success,
            "ip_address": extract_client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }
        if actor_id is not None:
            fields["actor_id"] = str(actor_id)
        if target_id is not None:
            fields["target_id"] = str(target_id)
        if failure_reason:
            fields["failure_reason"] = failure_reason.strip()
        sanitized = sanitize_metadata(metadata)
        if sanitized:
            fields["metadata"] = sanitized

        if success:
            logger.info("auth_event", **fields)
        else:
            logger.warning("auth_event", **fields)


@lru_cache
def get_audit_service() -> AuditService:
    """Create and cache audit service dependency."""
    return AuditService()
