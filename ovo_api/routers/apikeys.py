"""API key management routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.request_auth import AuthenticatedIdentity
from ovo_api.dependencies import get_current_identity, get_database_session, require_jwt_identity
from ovo_api.error_handlers import log_auth_failure, service_error_response
from ovo_api.schemas.api_key import APIKeyCreateRequest, APIKeyCreateResponse, APIKeyListItem
from ovo_api.schemas.common import DataResponse, MessageResponse
from ovo_api.services.api_key_service import APIKeyService, APIKeyServiceError, get_api_key_service
from ovo_api.services.audit_service import AuditService, get_audit_service

router = APIRouter(prefix="/keys", tags=["apikeys"])


def _parse_key_id(raw_key_id: str) -> UUID:
    """Parse a path id; malformed ids are indistinguishable from missing keys."""
    try:
        return UUID(raw_key_id)
    except ValueError as exc:
        raise APIKeyServiceError("API key not found", "api_key_not_found", 404) from exc


@router.post(
    "",
    response_model=DataResponse[APIKeyCreateResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_api_key(
    request: Request,
    payload: APIKeyCreateRequest,
    identity: Annotated[AuthenticatedIdentity, Depends(require_jwt_identity)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> DataResponse[APIKeyCreateResponse] | JSONResponse:
    """Create an API key and return the raw key exactly once."""
    try:
        created = await api_key_service.create_key(
            db_session=db_session, user_id=identity.user_id, name=payload.name
        )
    except APIKeyServiceError as exc:
        audit_service.emit_auth_event(
            event_type="api_key.create.failure",
            success=False,
            request=request,
            actor_id=identity.user_id,
            failure_reason=exc.code,
        )
        log_auth_failure(
            request=request, status_code=exc.status_code, message=exc.detail, code=exc.code
        )
        return service_error_response(exc)

    audit_service.emit_auth_event(
        event_type="api_key.create.success",
        success=True,
        request=request,
        actor_id=identity.user_id,
        target_id=created.id,
        metadata={"key_prefix": created.key_prefix},
    )
    return DataResponse(
        data=APIKeyCreateResponse(
            id=created.id,
            name=created.name,
            key_prefix=created.key_prefix,
            created_at=created.created_at,
            key=created.key,
        )
    )


@router.get("", response_model=DataResponse[list[APIKeyListItem]])
async def list_api_keys(
    identity: Annotated[AuthenticatedIdentity, Depends(get_current_identity)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
) -> DataResponse[list[APIKeyListItem]]:
    """List the caller's API keys, newest first."""
    rows = await api_key_service.list_keys(db_session=db_session, user_id=identity.user_id)
    return DataResponse(
        data=[
            APIKeyListItem(
                id=row.id,
                name=row.name,
                key_prefix=row.key_prefix,
                last_used_at=row.last_used_at,
                created_at=row.created_at,
            )
            for row in rows
        ]
    )


@router.delete("/{key_id}", response_model=MessageResponse)
async def revoke_api_key(
    key_id: str,
    request: Request,
    identity: Annotated[AuthenticatedIdentity, Depends(get_current_identity)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
    audit_service: Annotated[AuditService, Depends(get_audit_service)],
) -> MessageResponse | JSONResponse:
    """Revoke one of the caller's API keys."""
    try:
        await api_key_service.revoke_key(
            db_session=db_session, user_id=identity.user_id, key_id=_parse_key_id(key_id)
        )
    except APIKeyServiceError as exc:
        audit_service.emit_auth_event(
            event_type="api_key.revoke.failure",
            success=False,
            request=request,
            actor_id=identity.user_id,
            target_id=key_id,
            failure_reason=exc.code,
        )
        log_auth_failure(
            request=request, status_code=exc.status_code, message=exc.detail, code=exc.code
        )
        return service_error_response(exc)

    audit_service.emit_auth_event(
        event_type="api_key.revoke.success",
        success=True,
        request=request,
        actor_id=identity.user_id,
        target_id=key_id,
    )
    return MessageResponse(message="API key revoked")
