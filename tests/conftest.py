"""Shared in-memory doubles for unit and router tests."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import pytest

from ovo_api.db.credential_store import (
    ConsumedRefreshToken,
    CredentialConflictError,
    CredentialStore,
)
from ovo_api.models.api_key import APIKey
from ovo_api.models.refresh_token import RefreshToken
from ovo_api.models.user import AuthProvider, User


class FakeDBSession:
    """Minimal async DB session stub that counts transaction calls."""

    def __init__(self) -> None:
        self.commit_count = 0
        self.rollback_count = 0
        self.closed = False

    async def flush(self) -> None:
        """No-op flush."""
        return None

    async def commit(self) -> None:
        """Count commits."""
        self.commit_count += 1

    async def rollback(self) -> None:
        """Count rollbacks."""
        self.rollback_count += 1

    async def __aenter__(self) -> FakeDBSession:
        return self

    async def __aexit__(self, *_: Any) -> None:
        self.closed = True


class InMemoryCredentialStore(CredentialStore):
    """Dict-backed credential store with the same contract as the SQL store."""

    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}
        self.refresh_tokens: dict[str, RefreshToken] = {}
        self.api_keys: dict[UUID, APIKey] = {}
        self.touched: list[tuple[UUID, datetime]] = []
        self.fail_touch = False

    async def get_user_by_email(self, db_session: Any, email: str) -> User | None:
        normalized = email.strip().lower()
        for user in self.users.values():
            if user.email.lower() == normalized:
                return user
        return None

    async def get_user_by_id(self, db_session: Any, user_id: UUID) -> User | None:
        return self.users.get(user_id)

    async def add_user(
        self,
        db_session: Any,
        name: str,
        email: str,
        password_hash: str | None,
        auth_provider: AuthProvider,
    ) -> User:
        if await self.get_user_by_email(db_session, email) is not None:
            raise CredentialConflictError("email")
        now = datetime.now(UTC)
        user = User(
            id=uuid4(),
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            auth_provider=auth_provider,
            created_at=now,
            updated_at=now,
        )
        self.users[user.id] = user
        return user

    async def set_auth_provider(
        self, db_session: Any, user: User, auth_provider: AuthProvider
    ) -> User:
        user.auth_provider = auth_provider
        user.updated_at = datetime.now(UTC)
        return user

    async def add_refresh_token(
        self, db_session: Any, user_id: UUID, token: str, expires_at: datetime
    ) -> RefreshToken:
        row = RefreshToken(
            id=uuid4(),
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            created_at=datetime.now(UTC),
        )
        self.refresh_tokens[token] = row
        return row

    async def consume_refresh_token(
        self, db_session: Any, token: str
    ) -> ConsumedRefreshToken | None:
        row = self.refresh_tokens.pop(token, None)
        if row is None:
            return None
        return ConsumedRefreshToken(user_id=row.user_id, expires_at=row.expires_at)

    async def delete_refresh_token(self, db_session: Any, token: str) -> int:
        return 1 if self.refresh_tokens.pop(token, None) is not None else 0

    async def delete_expired_refresh_tokens(self, db_session: Any, now: datetime) -> int:
        expired = [token for token, row in self.refresh_tokens.items() if row.expires_at <= now]
        for token in expired:
            del self.refresh_tokens[token]
        return len(expired)

    async def count_api_keys(self, db_session: Any, user_id: UUID) -> int:
        return sum(1 for row in self.api_keys.values() if row.user_id == user_id)

    async def add_api_key(
        self,
        db_session: Any,
        user_id: UUID,
        name: str,
        key_hash: str,
        key_prefix: str,
    ) -> APIKey:
        if any(row.key_hash == key_hash for row in self.api_keys.values()):
            raise CredentialConflictError("key_hash")
        row = APIKey(
            id=uuid4(),
            user_id=user_id,
            name=name,
            key_hash=key_hash,
            key_prefix=key_prefix,
            last_used_at=None,
            created_at=datetime.now(UTC),
        )
        self.api_keys[row.id] = row
        return row

    async def list_api_keys(self, db_session: Any, user_id: UUID) -> list[APIKey]:
        rows = [row for row in self.api_keys.values() if row.user_id == user_id]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    async def get_api_key_by_hash(self, db_session: Any, key_hash: str) -> APIKey | None:
        for row in self.api_keys.values():
            if row.key_hash == key_hash:
                return row
        return None

    async def delete_api_key(self, db_session: Any, user_id: UUID, key_id: UUID) -> bool:
        row = self.api_keys.get(key_id)
        if row is None or row.user_id != user_id:
            return False
        del self.api_keys[key_id]
        return True

    async def touch_api_key(self, db_session: Any, key_id: UUID, used_at: datetime) -> None:
        if self.fail_touch:
            raise RuntimeError("database unavailable")
        row = self.api_keys.get(key_id)
        if row is not None:
            row.last_used_at = used_at
        self.touched.append((key_id, used_at))


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    """Provide an empty in-memory credential store."""
    return InMemoryCredentialStore()


@pytest.fixture
def fake_db_session() -> FakeDBSession:
    """Provide a transaction-counting DB session stub."""
    return FakeDBSession()


@pytest.fixture
def fake_session_factory() -> type[FakeDBSession]:
    """Provide a callable that opens fresh session stubs."""
    return FakeDBSession
