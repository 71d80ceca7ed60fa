"""Authenticated user profile routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.request_auth import AuthenticatedIdentity
from ovo_api.dependencies import get_current_identity, get_database_session
from ovo_api.schemas.common import DataResponse
from ovo_api.schemas.user import UserResponse, to_user_response
from ovo_api.services.user_service import UserService, get_user_service

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/profile", response_model=DataResponse[UserResponse])
async def get_profile(
    identity: Annotated[AuthenticatedIdentity, Depends(get_current_identity)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    user_service: Annotated[UserService, Depends(get_user_service)],
) -> DataResponse[UserResponse]:
    """Return the caller's profile."""
    user = await user_service.get_user(db_session=db_session, user_id=identity.user_id)
    return DataResponse(data=to_user_response(user))
