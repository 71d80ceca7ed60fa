"""Event Horizon delegated login routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.dependencies import get_database_session
from ovo_api.error_handlers import error_response, log_auth_failure, service_error_response
from ovo_api.services.audit_service import AuditService, get_audit_service
from ovo_api.services.oauth_service import OAuthService, OAuthServiceError, get_oauth_service

router = APIRouter(prefix="/auth/eventhorizon", tags=["oauth"])


@router.get("/login")
async def eventhorizon_login(
    request: Request,
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
    redirect_uri: Annotated[str | None, Query()] = None,
) -> Response:
    """Redirect the browser to the Event Horizon authorization page."""
    try:
        authorization_url = await oauth_service.build_login_url(redirect_uri=redirect_uri)
    except OAuthServiceError as exc:
        audit_service.emit_auth_event(
            event_type="oauth.login.failure",
            success=False,
            request=request,
            failure_reason=exc.code,
            metadata={"provider": "eventhorizon"},
        )
        log_auth_failure(
            request=request, status_code=exc.status_code, message=exc.detail, code=exc.code
        )
        return service_error_response(exc)

    audit_service.emit_auth_event(
        event_type="oauth.login.started",
        success=True,
        request=request,
        metadata={"provider": "eventhorizon"},
    )
    return RedirectResponse(url=authorization_url, status_code=302)


@router.get("/callback")
async def eventhorizon_callback(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
) -> Response:
    """Complete delegated login and hand the tokens back to the client redirect."""
    if error is not None and code is None:
        audit_service.emit_auth_event(
            event_type="oauth.callback.failure",
            success=False,
            request=request,
            failure_reason="oauth_denied",
            metadata={"provider": "eventhorizon", "provider_error": error[:64]},
        )
        return _failure(request, 400, "Event Horizon sign-in was not completed", "oauth_denied")
    if not code or not state:
        return _failure(request, 400, "Missing authorization code or state", "validation_failed")

    try:
        result = await oauth_service.complete_callback(
            db_session=db_session,
            state=state,
            code=code,
        )
    except OAuthServiceError as exc:
        audit_service.emit_auth_event(
            event_type="oauth.callback.failure",
            success=False,
            request=request,
            failure_reason=exc.code,
            metadata={"provider": "eventhorizon"},
        )
        log_auth_failure(
            request=request, status_code=exc.status_code, message=exc.detail, code=exc.code
        )
        return service_error_response(exc)

    audit_service.emit_auth_event(
        event_type="oauth.callback.success",
        success=True,
        request=request,
        actor_id=result.user.id,
        metadata={
            "provider": "eventhorizon",
            "account_created": result.created,
            "account_linked": result.linked,
        },
    )
    return RedirectResponse(
        url=oauth_service.build_client_redirect(result.redirect_uri, result.tokens),
        status_code=302,
    )


def _failure(request: Request, status_code: int, message: str, code: str) -> JSONResponse:
    log_auth_failure(request=request, status_code=status_code, message=message, code=code)
    return error_response(status_code=status_code, message=message, code=code)
