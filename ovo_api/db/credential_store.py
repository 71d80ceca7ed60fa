"""Credential store: persistence for users, refresh tokens, and API keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.models.api_key import APIKey
from ovo_api.models.refresh_token import RefreshToken
from ovo_api.models.user import AuthProvider, User


@dataclass(frozen=True)
class ConsumedRefreshToken:
    """Row data returned by an atomic refresh token delete."""

    user_id: UUID
    expires_at: datetime


class CredentialConflictError(Exception):
    """Raised when a uniqueness constraint rejects a write."""


class CredentialStore:
    """Keyed lookups and writes over the credential tables.

    Methods flush but never commit; transaction boundaries belong to the caller.
    """

    async def get_user_by_email(self, db_session: AsyncSession, email: str) -> User | None:
        """Fetch a user by case-normalized email."""
        statement = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await db_session.execute(statement)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, db_session: AsyncSession, user_id: UUID) -> User | None:
        """Fetch a user by primary key."""
        result = await db_session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def add_user(
        self,
        db_session: AsyncSession,
        name: str,
        email: str,
        password_hash: str | None,
        auth_provider: AuthProvider,
    ) -> User:
        """Insert a user row; duplicate emails raise CredentialConflictError."""
        now = datetime.now(UTC)
        user = User(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            auth_provider=auth_provider,
            created_at=now,
            updated_at=now,
        )
        db_session.add(user)
        try:
            await db_session.flush()
        except IntegrityError as exc:
            await db_session.rollback()
            raise CredentialConflictError("email") from exc
        return user

    async def set_auth_provider(
        self, db_session: AsyncSession, user: User, auth_provider: AuthProvider
    ) -> User:
        """Bind an existing user to a different identity provider."""
        user.auth_provider = auth_provider
        user.updated_at = datetime.now(UTC)
        await db_session.flush()
        return user

    async def add_refresh_token(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        token: str,
        expires_at: datetime,
    ) -> RefreshToken:
        """Insert a refresh token row."""
        row = RefreshToken(
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            created_at=datetime.now(UTC),
        )
        db_session.add(row)
        await db_session.flush()
        return row

    async def consume_refresh_token(
        self, db_session: AsyncSession, token: str
    ) -> ConsumedRefreshToken | None:
        """Delete a refresh token by value and return the deleted row, if any.

        DELETE ... RETURNING makes this the single point of truth under
        concurrent use: only one caller can receive the row.
        """
        statement = (
            delete(RefreshToken)
            .where(RefreshToken.token == token)
            .returning(RefreshToken.user_id, RefreshToken.expires_at)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(statement)
        row = result.one_or_none()
        if row is None:
            return None
        return ConsumedRefreshToken(user_id=row.user_id, expires_at=row.expires_at)

    async def delete_refresh_token(self, db_session: AsyncSession, token: str) -> int:
        """Delete a refresh token by value and return the affected row count."""
        statement = (
            delete(RefreshToken)
            .where(RefreshToken.token == token)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(statement)
        return int(result.rowcount or 0)

    async def delete_expired_refresh_tokens(self, db_session: AsyncSession, now: datetime) -> int:
        """Delete every refresh token whose expiry is at or before ``now``."""
        statement = (
            delete(RefreshToken)
            .where(RefreshToken.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(statement)
        return int(result.rowcount or 0)

    async def count_api_keys(self, db_session: AsyncSession, user_id: UUID) -> int:
        """Count API keys held by a user."""
        statement = select(func.count()).select_from(APIKey).where(APIKey.user_id == user_id)
        result = await db_session.execute(statement)
        return int(result.scalar_one())

    async def add_api_key(
        self,
        db_session: AsyncSession,
        user_id: UUID,
        name: str,
        key_hash: str,
        key_prefix: str,
    ) -> APIKey:
        """Insert an API key row."""
        row = APIKey(
            user_id=user_id,
            name=name,
            key_hash=key_hash,
            key_prefix=key_prefix,
            last_used_at=None,
            created_at=datetime.now(UTC),
        )
        db_session.add(row)
        try:
            await db_session.flush()
        except IntegrityError as exc:
            await db_session.rollback()
            raise CredentialConflictError("key_hash") from exc
        return row

    async def list_api_keys(self, db_session: AsyncSession, user_id: UUID) -> list[APIKey]:
        """List a user's API keys, newest first."""
        statement = (
            select(APIKey).where(APIKey.user_id == user_id).order_by(APIKey.created_at.desc())
        )
        result = await db_session.execute(statement)
        return list(result.scalars().all())

    async def get_api_key_by_hash(self, db_session: AsyncSession, key_hash: str) -> APIKey | None:
        """Fetch an API key row by its stored hash."""
        result = await db_session.execute(select(APIKey).where(APIKey.key_hash == key_hash))
        return result.scalar_one_or_none()

    async def delete_api_key(self, db_session: AsyncSession, user_id: UUID, key_id: UUID) -> bool:
        """Delete an API key only when owned by ``user_id``."""
        statement = (
            delete(APIKey)
            .where(APIKey.id == key_id, APIKey.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        result = await db_session.execute(statement)
        return bool(result.rowcount)

    async def touch_api_key(self, db_session: AsyncSession, key_id: UUID, used_at: datetime) -> None:
        """Record the last successful use of an API key."""
        statement = (
            update(APIKey)
            .where(APIKey.id == key_id)
            .values(last_used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        await db_session.execute(statement)


@lru_cache
def get_credential_store() -> CredentialStore:
    """Create and cache the credential store."""
    return CredentialStore()
