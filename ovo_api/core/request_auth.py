"""Bearer credential resolution for protected routes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.api_keys import APIKeyCore
from ovo_api.core.jwt import TokenValidationError
from ovo_api.errors import ConfigurationError, ServiceError
from ovo_api.services.api_key_service import APIKeyService
from ovo_api.services.token_service import TokenService

logger = structlog.get_logger(__name__)

CredentialType = Literal["user", "api_key"]


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Caller identity resolved from a bearer credential."""

    type: CredentialType
    user_id: UUID
    key_id: UUID | None = None


class AuthenticationError(ServiceError):
    """Raised when a request carries no usable credential."""

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail, code, 401)


def extract_bearer_token(authorization: str | None) -> str:
    """Return the bearer value from an Authorization header."""
    if not authorization:
        raise AuthenticationError("Authentication required", "authentication_required")
    scheme, _, value = authorization.strip().partition(" ")
    token = value.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Authentication required", "authentication_required")
    return token


class RequestAuthenticator:
    """Dispatch a bearer value to API key or access token validation by its prefix."""

    def __init__(
        self,
        api_key_core: APIKeyCore,
        api_key_service: APIKeyService,
        token_service: TokenService,
    ) -> None:
        self._api_key_core = api_key_core
        self._api_key_service = api_key_service
        self._token_service = token_service

    async def authenticate(
        self, db_session: AsyncSession, authorization: str | None
    ) -> AuthenticatedIdentity:
        """Resolve the caller or raise AuthenticationError."""
        token = extract_bearer_token(authorization)
        if self._api_key_core.is_api_key(token):
            return await self._authenticate_api_key(db_session=db_session, raw_key=token)
        return self._authenticate_access_token(token)

    async def _authenticate_api_key(
        self, db_session: AsyncSession, raw_key: str
    ) -> AuthenticatedIdentity:
        validated = await self._api_key_service.validate(db_session=db_session, raw_key=raw_key)
        if validated is None:
            raise AuthenticationError("Invalid API key", "invalid_api_key")
        return AuthenticatedIdentity(
            type="api_key", user_id=validated.user_id, key_id=validated.key_id
        )

    def _authenticate_access_token(self, token: str) -> AuthenticatedIdentity:
        try:
            claims = self._token_service.verify_access_token(token)
            user_id = UUID(str(claims["sub"]))
        except TokenValidationError as exc:
            raise AuthenticationError(exc.detail, exc.code) from exc
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning(
                "access_token_authentication_failed",
                error_type=type(exc).__name__,
            )
            raise AuthenticationError("Authentication failed", "authentication_failed") from exc
        return AuthenticatedIdentity(type="user", user_id=user_id)
