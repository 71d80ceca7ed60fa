"""Opaque refresh token issuance, rotation, and revocation."""

from __future__ import annotations

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.config import get_settings
from ovo_api.db.credential_store import CredentialStore, get_credential_store
from ovo_api.errors import ServiceError

logger = structlog.get_logger(__name__)

AccessTokenIssuer = Callable[[str], str]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenPair:
    """Access token and refresh token returned to the client."""

    access_token: str
    refresh_token: str


class RefreshTokenError(ServiceError):
    """Raised when a refresh token cannot be used."""

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail, code, 401)


class RefreshTokenManager:
    """Single-use refresh tokens backed by the credential store."""

    _TOKEN_BYTES = 64

    def __init__(
        self,
        store: CredentialStore,
        refresh_token_ttl_seconds: int,
        clock: Clock = _utcnow,
    ) -> None:
        self._store = store
        self._refresh_token_ttl_seconds = refresh_token_ttl_seconds
        self._clock = clock

    async def issue(self, db_session: AsyncSession, user_id: UUID) -> str:
        """Persist a new refresh token for ``user_id`` and return its raw value.

        The row is flushed, not committed.
        """
        raw_token = secrets.token_hex(self._TOKEN_BYTES)
        await self._store.add_refresh_token(
            db_session=db_session,
            user_id=user_id,
            token=raw_token,
            expires_at=self._clock() + timedelta(seconds=self._refresh_token_ttl_seconds),
        )
        return raw_token

    async def rotate(
        self,
        db_session: AsyncSession,
        raw_refresh_token: str,
        access_token_issuer: AccessTokenIssuer,
    ) -> TokenPair:
        """Consume a refresh token and return a new access/refresh pair."""
        try:
            consumed = await self._store.consume_refresh_token(
                db_session=db_session, token=raw_refresh_token
            )
            if consumed is None:
                raise RefreshTokenError("Invalid refresh token", "invalid_refresh_token")

            if consumed.expires_at <= self._clock():
                # The stale row is already deleted; keep that deletion.
                await db_session.commit()
                logger.info("refresh_token_expired_purged", user_id=str(consumed.user_id))
                raise RefreshTokenError("Refresh token expired", "refresh_token_expired")

            access_token = access_token_issuer(str(consumed.user_id))
            new_refresh_token = await self.issue(db_session=db_session, user_id=consumed.user_id)
        except RefreshTokenError:
            raise
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return TokenPair(access_token=access_token, refresh_token=new_refresh_token)

    async def invalidate(self, db_session: AsyncSession, raw_refresh_token: str) -> None:
        """Delete a refresh token by value; unknown values are ignored."""
        try:
            await self._store.delete_refresh_token(db_session=db_session, token=raw_refresh_token)
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()

    async def purge_expired(self, db_session: AsyncSession) -> int:
        """Delete every expired refresh token and return how many were removed."""
        try:
            deleted = await self._store.delete_expired_refresh_tokens(
                db_session=db_session, now=self._clock()
            )
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return deleted


@lru_cache
def get_refresh_token_manager() -> RefreshTokenManager:
    """Create and cache the refresh token manager."""
    settings = get_settings()
    return RefreshTokenManager(
        store=get_credential_store(),
        refresh_token_ttl_seconds=settings.jwt.refresh_token_ttl_seconds,
    )
