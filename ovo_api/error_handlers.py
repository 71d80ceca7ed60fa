"""Global exception handlers enforcing the API error envelope."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ovo_api.errors import ConfigurationError, ServiceError
from ovo_api.services.audit_service import extract_client_ip

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "validation_failed",
    401: "authentication_required",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
    502: "upstream_failure",
    503: "service_unavailable",
}

_DEFAULT_MESSAGE_BY_STATUS: dict[int, str] = {
    404: "Route not found",
    405: "Method not allowed",
}

_STARLETTE_DEFAULT_DETAILS = (None, "Not Found", "Method Not Allowed")

_AUTH_PATH_SEGMENTS = ("/auth", "/keys", "/user")

logger = structlog.get_logger(__name__)


def error_response(
    status_code: int,
    message: str,
    code: str,
    errors: dict[str, list[str]] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the standard failure envelope."""
    content: dict[str, Any] = {"success": False, "message": message, "code": code}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def service_error_response(exc: ServiceError) -> JSONResponse:
    """Render a service-layer error as the standard failure envelope."""
    return error_response(status_code=exc.status_code, message=exc.detail, code=exc.code)


def _extract_message_and_code(detail: Any, status_code: int) -> tuple[str, str]:
    """Normalize framework exception detail into message and code."""
    default_code = _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "request_failed")
    if isinstance(detail, dict):
        message = str(detail.get("message") or detail.get("detail") or "Request failed")
        return message, str(detail.get("code") or default_code)
    if status_code in _DEFAULT_MESSAGE_BY_STATUS and detail in _STARLETTE_DEFAULT_DETAILS:
        return _DEFAULT_MESSAGE_BY_STATUS[status_code], default_code
    if isinstance(detail, str) and detail:
        return detail, default_code
    return "Request failed", default_code


def _validation_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    """Group validation messages by dotted field path."""
    grouped: dict[str, list[str]] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        path = ".".join(location) or "body"
        message = str(error.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        grouped.setdefault(path, []).append(message)
    return grouped


def _is_auth_request_path(path: str) -> bool:
    """Return True for credential-bearing request paths."""
    return any(segment in path for segment in _AUTH_PATH_SEGMENTS)


def _extract_user_id(request: Request) -> str | None:
    """Extract the resolved caller id from request state, if any."""
    identity = getattr(request.state, "user", None)
    user_id = getattr(identity, "user_id", None)
    return str(user_id) if user_id else None


def log_auth_failure(request: Request, status_code: int, message: str, code: str) -> None:
    """Emit a WARNING log for 4xx responses on auth paths."""
    if status_code < 400 or status_code >= 500:
        return
    if not _is_auth_request_path(request.url.path):
        return
    logger.warning(
        "auth_failure",
        event_type="auth_failure",
        user_id=_extract_user_id(request),
        ip_address=extract_client_ip(request),
        success=False,
        status_code=status_code,
        code=code,
        detail=message,
        path=request.url.path,
        method=request.method,
    )


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing the error envelope."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to the envelope."""
        message, code = _extract_message_and_code(exc.detail, exc.status_code)
        log_auth_failure(request=request, status_code=exc.status_code, message=message, code=code)
        return error_response(
            status_code=exc.status_code,
            message=message,
            code=code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to a 400 with per-field messages."""
        return error_response(
            status_code=400,
            message="Validation failed",
            code="validation_failed",
            errors=_validation_errors(exc),
        )

    @app.exception_handler(ConfigurationError)
    async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
        """Log the missing setting and answer with a generic 500."""
        logger.error(
            "configuration_error",
            setting=exc.setting,
            path=request.url.path,
            method=request.method,
        )
        return error_response(status_code=500, message=exc.detail, code=exc.code)

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError) -> JSONResponse:
        """Render service errors that escaped a router."""
        log_auth_failure(
            request=request, status_code=exc.status_code, message=exc.detail, code=exc.code
        )
        return service_error_response(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors outside development."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        message = str(exc) if environment == "development" and str(exc) else "Internal server error"
        return error_response(status_code=500, message=message, code="internal_error")
