"""Shared FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.api_keys import APIKeyCore
from ovo_api.core.request_auth import (
    AuthenticatedIdentity,
    AuthenticationError,
    RequestAuthenticator,
)
from ovo_api.db.session import get_db_session
from ovo_api.services.api_key_service import get_api_key_service
from ovo_api.services.token_service import get_token_service


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped async database session dependency."""
    async for session in get_db_session():
        yield session


@lru_cache
def get_request_authenticator() -> RequestAuthenticator:
    """Create and cache the bearer credential authenticator."""
    return RequestAuthenticator(
        api_key_core=APIKeyCore(),
        api_key_service=get_api_key_service(),
        token_service=get_token_service(),
    )


async def get_current_identity(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    authenticator: Annotated[RequestAuthenticator, Depends(get_request_authenticator)],
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedIdentity:
    """Resolve the caller from an access token or an API key."""
    identity = await authenticator.authenticate(db_session=db_session, authorization=authorization)
    request.state.user = identity
    return identity


async def require_jwt_identity(
    identity: Annotated[AuthenticatedIdentity, Depends(get_current_identity)],
) -> AuthenticatedIdentity:
    """Resolve the caller and reject API key credentials."""
    if identity.type != "user":
        raise AuthenticationError(
            "This action requires a user access token", "jwt_required"
        )
    return identity
