"""API key lifecycle and validation service."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.api_keys import APIKeyCore
from ovo_api.core.background import DetachedTaskSupervisor, get_task_supervisor
from ovo_api.db.credential_store import (
    CredentialConflictError,
    CredentialStore,
    get_credential_store,
)
from ovo_api.db.session import get_session_factory
from ovo_api.errors import ServiceError
from ovo_api.models.api_key import APIKey

MAX_API_KEYS_PER_USER = 10

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True)
class CreatedAPIKey:
    """API key creation result containing raw key one-time output."""

    id: UUID
    name: str
    key_prefix: str
    created_at: datetime
    key: str


@dataclass(frozen=True)
class ValidatedAPIKey:
    """Owner and key id resolved from a raw API key."""

    user_id: UUID
    key_id: UUID


class APIKeyServiceError(ServiceError):
    """Raised for API key service failures."""


class APIKeyService:
    """Service for API key creation, listing, revocation, and validation."""

    def __init__(
        self,
        core: APIKeyCore,
        store: CredentialStore,
        supervisor: DetachedTaskSupervisor,
        session_factory: SessionFactory,
        max_keys_per_user: int = MAX_API_KEYS_PER_USER,
    ) -> None:
        self._core = core
        self._store = store
        self._supervisor = supervisor
        self._session_factory = session_factory
        self._max_keys_per_user = max_keys_per_user

    async def create_key(self, db_session: AsyncSession, user_id: UUID, name: str) -> CreatedAPIKey:
        """Create an API key and return the raw key exactly once."""
        existing = await self._store.count_api_keys(db_session=db_session, user_id=user_id)
        if existing >= self._max_keys_per_user:
            raise APIKeyServiceError(
                f"Maximum of {self._max_keys_per_user} API keys per user",
                "api_key_quota_exceeded",
                400,
            )

        raw_key = self._core.generate_raw_key()
        try:
            key_row = await self._store.add_api_key(
                db_session=db_session,
                user_id=user_id,
                name=name.strip(),
                key_hash=self._core.hash_key(raw_key),
                key_prefix=self._core.key_prefix(raw_key),
            )
        except CredentialConflictError as exc:
            raise APIKeyServiceError("Failed to create API key", "internal_error", 500) from exc
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return CreatedAPIKey(
            id=key_row.id,
            name=key_row.name,
            key_prefix=key_row.key_prefix,
            created_at=key_row.created_at,
            key=raw_key,
        )

    async def list_keys(self, db_session: AsyncSession, user_id: UUID) -> list[APIKey]:
        """List the caller's API keys, newest first."""
        return await self._store.list_api_keys(db_session=db_session, user_id=user_id)

    async def revoke_key(self, db_session: AsyncSession, user_id: UUID, key_id: UUID) -> None:
        """Delete an API key owned by ``user_id``; anything else is not found."""
        try:
            deleted = await self._store.delete_api_key(
                db_session=db_session, user_id=user_id, key_id=key_id
            )
        except Exception:
            await db_session.rollback()
            raise
        if not deleted:
            await db_session.rollback()
            raise APIKeyServiceError("API key not found", "api_key_not_found", 404)
        await db_session.commit()

    async def validate(self, db_session: AsyncSession, raw_key: str) -> ValidatedAPIKey | None:
        """Resolve a raw key to its owner; ``None`` for anything that does not match."""
        if not self._core.is_api_key(raw_key):
            return None

        key_row = await self._store.get_api_key_by_hash(
            db_session=db_session, key_hash=self._core.hash_key(raw_key)
        )
        if key_row is None:
            return None
        if not self._core.hash_matches(key_row.key_hash, raw_key):
            return None

        self._supervisor.spawn(
            self._touch_last_used(key_id=key_row.id, used_at=datetime.now(UTC)),
            name=f"api_key_touch:{key_row.id}",
        )
        return ValidatedAPIKey(user_id=key_row.user_id, key_id=key_row.id)

    async def _touch_last_used(self, key_id: UUID, used_at: datetime) -> None:
        """Record key usage on a dedicated session, outside the request transaction."""
        async with self._session_factory() as db_session:
            await self._store.touch_api_key(db_session=db_session, key_id=key_id, used_at=used_at)
            await db_session.commit()


@lru_cache
def get_api_key_service() -> APIKeyService:
    """Create and cache API key service dependency."""
    return APIKeyService(
        core=APIKeyCore(),
        store=get_credential_store(),
        supervisor=get_task_supervisor(),
        session_factory=get_session_factory(),
    )
