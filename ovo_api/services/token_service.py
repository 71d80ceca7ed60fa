"""Token issuance, rotation, and revocation service."""

from __future__ import annotations

from functools import lru_cache
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.config import get_settings
from ovo_api.core.jwt import JWTService, get_jwt_service
from ovo_api.core.refresh_tokens import (
    RefreshTokenManager,
    TokenPair,
    get_refresh_token_manager,
)


class TokenService:
    """Service responsible for access tokens and refresh token lifecycles."""

    def __init__(
        self,
        jwt_service: JWTService,
        refresh_token_manager: RefreshTokenManager,
        access_token_ttl_seconds: int,
    ) -> None:
        self._jwt_service = jwt_service
        self._refresh_token_manager = refresh_token_manager
        self._access_token_ttl_seconds = access_token_ttl_seconds

    def issue_access_token(self, user_id: str) -> str:
        """Issue a short-lived access token for a user id."""
        return self._jwt_service.issue_token(
            subject=user_id,
            token_type="access",
            expires_in_seconds=self._access_token_ttl_seconds,
        )

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Verify an access token and return its claims."""
        return self._jwt_service.verify_token(token, expected_type="access")

    async def issue_token_pair(self, db_session: AsyncSession, user_id: UUID) -> TokenPair:
        """Issue and persist a fresh access/refresh pair, committing the refresh row."""
        try:
            access_token = self.issue_access_token(str(user_id))
            refresh_token = await self._refresh_token_manager.issue(
                db_session=db_session, user_id=user_id
            )
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def refresh(self, db_session: AsyncSession, raw_refresh_token: str) -> TokenPair:
        """Rotate a refresh token into a new pair."""
        return await self._refresh_token_manager.rotate(
            db_session=db_session,
            raw_refresh_token=raw_refresh_token,
            access_token_issuer=self.issue_access_token,
        )

    async def revoke(self, db_session: AsyncSession, raw_refresh_token: str | None) -> None:
        """Invalidate a refresh token; missing or unknown tokens are a no-op."""
        if not raw_refresh_token:
            return
        await self._refresh_token_manager.invalidate(
            db_session=db_session, raw_refresh_token=raw_refresh_token
        )


@lru_cache
def get_token_service() -> TokenService:
    """Build and cache token service based on application settings."""
    settings = get_settings()
    return TokenService(
        jwt_service=get_jwt_service(),
        refresh_token_manager=get_refresh_token_manager(),
        access_token_ttl_seconds=settings.jwt.access_token_ttl_seconds,
    )
