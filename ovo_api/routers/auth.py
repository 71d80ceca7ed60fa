"""Password authentication and token lifecycle routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.refresh_tokens import RefreshTokenError
from ovo_api.dependencies import get_database_session
from ovo_api.error_handlers import log_auth_failure, service_error_response
from ovo_api.schemas.common import DataResponse, MessageResponse
from ovo_api.schemas.token import LogoutRequest, RefreshTokenRequest, TokenPairResponse
from ovo_api.schemas.user import AuthResponse, LoginRequest, RegisterRequest, to_user_response
from ovo_api.services.audit_service import AuditService, get_audit_service
from ovo_api.services.token_service import TokenService, get_token_service
from ovo_api.services.user_service import UserService, UserServiceError, get_user_service

router = APIRouter(prefix="/auth", tags=["auth"])


def _failure(request: Request, exc: UserServiceError | RefreshTokenError) -> JSONResponse:
    log_auth_failure(request=request, status_code=exc.status_code, message=exc.detail, code=exc.code)
    return service_error_response(exc)


@router.post(
    "/register",
    response_model=DataResponse[AuthResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    user_service: Annotated[UserService, Depends(get_user_service)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> DataResponse[AuthResponse] | JSONResponse:
    """Create a local account and issue its first token pair."""
    try:
        user = await user_service.register(
            db_session=db_session,
            name=payload.name,
            email=payload.email,
            password=payload.password,
        )
    except UserServiceError as exc:
        audit_service.emit_auth_event(
            event_type="user.register.failure",
            success=False,
            request=request,
            failure_reason=exc.code,
        )
        return _failure(request, exc)

    token_pair = await token_service.issue_token_pair(db_session=db_session, user_id=user.id)
    audit_service.emit_auth_event(
        event_type="user.register.success",
        success=True,
        request=request,
        actor_id=user.id,
        metadata={"provider": "password"},
    )
    return DataResponse(
        data=AuthResponse(
            user=to_user_response(user),
            tokens=TokenPairResponse(
                access_token=token_pair.access_token,
                refresh_token=token_pair.refresh_token,
            ),
        )
    )


@router.post("/login", response_model=DataResponse[AuthResponse])
async def login(
    payload: LoginRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    user_service: Annotated[UserService, Depends(get_user_service)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> DataResponse[AuthResponse] | JSONResponse:
    """Authenticate email/password credentials and issue a token pair."""
    try:
        user = await user_service.authenticate(
            db_session=db_session,
            email=payload.email,
            password=payload.password,
        )
    except UserServiceError as exc:
        audit_service.emit_auth_event(
            event_type="user.login.failure",
            success=False,
            request=request,
            failure_reason=exc.code,
            metadata={"provider": "password"},
        )
        return _failure(request, exc)

    token_pair = await token_service.issue_token_pair(db_session=db_session, user_id=user.id)
    audit_service.emit_auth_event(
        event_type="user.login.success",
        success=True,
        request=request,
        actor_id=user.id,
        metadata={"provider": "password"},
    )
    return DataResponse(
        data=AuthResponse(
            user=to_user_response(user),
            tokens=TokenPairResponse(
                access_token=token_pair.access_token,
                refresh_token=token_pair.refresh_token,
            ),
        )
    )


@router.post("/refresh", response_model=DataResponse[TokenPairResponse])
async def refresh(
    payload: RefreshTokenRequest,
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> DataResponse[TokenPairResponse] | JSONResponse:
    """Rotate a refresh token into a new access/refresh pair."""
    try:
        token_pair = await token_service.refresh(
            db_session=db_session, raw_refresh_token=payload.refresh_token
        )
    except RefreshTokenError as exc:
        audit_service.emit_auth_event(
            event_type="token.refresh.failure",
            success=False,
            request=request,
            failure_reason=exc.code,
        )
        return _failure(request, exc)

    audit_service.emit_auth_event(event_type="token.refresh.success", success=True, request=request)
    return DataResponse(
        data=TokenPairResponse(
            access_token=token_pair.access_token,
            refresh_token=token_pair.refresh_token,
        )
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    token_service: Annotated[TokenService, Depends(get_token_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
    payload: Annotated[LogoutRequest | None, Body()] = None,
) -> MessageResponse:
    """Invalidate a refresh token; always succeeds."""
    refresh_token = payload.refresh_token if payload is not None else None
    await token_service.revoke(db_session=db_session, raw_refresh_token=refresh_token)
    audit_service.emit_auth_event(
        event_type="user.logout",
        success=True,
        request=request,
        metadata={"credential_presented": refresh_token is not None},
    )
    return MessageResponse(message="Logged out successfully")
