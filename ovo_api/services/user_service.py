"""User registration, password login, and profile lookup."""

from __future__ import annotations

import asyncio
from functools import lru_cache
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.core.passwords import PasswordHasher, get_password_hasher
from ovo_api.db.credential_store import (
    CredentialConflictError,
    CredentialStore,
    get_credential_store,
)
from ovo_api.errors import ServiceError
from ovo_api.models.user import AuthProvider, User


class UserServiceError(ServiceError):
    """Raised when user operations fail validation or authentication."""


class UserService:
    """Service responsible for local accounts and password verification."""

    def __init__(self, store: CredentialStore, password_hasher: PasswordHasher) -> None:
        self._store = store
        self._password_hasher = password_hasher

    async def register(
        self,
        db_session: AsyncSession,
        name: str,
        email: str,
        password: str,
    ) -> User:
        """Create a local account; an existing email is a conflict."""
        normalized_email = email.strip().lower()
        existing = await self._store.get_user_by_email(db_session=db_session, email=normalized_email)
        if existing is not None:
            raise UserServiceError(
                "An account with this email already exists", "email_exists", 409
            )

        password_hash = await asyncio.to_thread(self._password_hasher.hash, password)
        try:
            user = await self._store.add_user(
                db_session=db_session,
                name=name.strip(),
                email=normalized_email,
                password_hash=password_hash,
                auth_provider=AuthProvider.LOCAL,
            )
        except CredentialConflictError as exc:
            raise UserServiceError(
                "An account with this email already exists", "email_exists", 409
            ) from exc
        return user

    async def authenticate(self, db_session: AsyncSession, email: str, password: str) -> User:
        """Authenticate password credentials or raise a 401 error."""
        user = await self._store.get_user_by_email(db_session=db_session, email=email)
        if user is None:
            await asyncio.to_thread(self._password_hasher.dummy_verify)
            raise UserServiceError("Invalid email or password", "invalid_credentials", 401)
        if user.password_hash is None:
            raise UserServiceError(
                "This account uses Event Horizon sign-in. Log in with Event Horizon instead.",
                "delegated_login_required",
                401,
            )
        matches = await asyncio.to_thread(
            self._password_hasher.verify, password, user.password_hash
        )
        if not matches:
            raise UserServiceError("Invalid email or password", "invalid_credentials", 401)
        return user

    async def get_user(self, db_session: AsyncSession, user_id: UUID) -> User:
        """Fetch a user by id or raise 404."""
        user = await self._store.get_user_by_id(db_session=db_session, user_id=user_id)
        if user is None:
            raise UserServiceError("User not found", "user_not_found", 404)
        return user


@lru_cache
def get_user_service() -> UserService:
    """Create and cache user service dependency."""
    return UserService(store=get_credential_store(), password_hasher=get_password_hasher())
