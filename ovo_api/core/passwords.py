"""Password hashing and verification."""

from __future__ import annotations

from functools import lru_cache

from passlib.context import CryptContext

from ovo_api.config import get_settings


class PasswordHasher:
    """bcrypt password hashing with a configurable cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        """Generate a salted bcrypt hash for the provided password."""
        return str(self._context.hash(password))

    def verify(self, password: str, password_hash: str | None) -> bool:
        """Verify a plaintext password; malformed hashes never match."""
        if not password_hash:
            return False
        try:
            return bool(self._context.verify(password, password_hash))
        except (ValueError, TypeError):
            return False

    def dummy_verify(self) -> None:
        """Spend comparable time when there is no stored hash to check."""
        self._context.dummy_verify()


@lru_cache
def get_password_hasher() -> PasswordHasher:
    """Build and cache the password hasher from settings."""
    return PasswordHasher(rounds=get_settings().passwords.bcrypt_rounds)
