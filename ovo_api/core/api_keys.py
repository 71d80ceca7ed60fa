"""API key generation, hashing, and comparison primitives."""

from __future__ import annotations

import hmac
import secrets
from hashlib import sha256

API_KEY_PREFIX = "ovo_k_"


class APIKeyCore:
    """Core API key operations."""

    _PREFIX = API_KEY_PREFIX
    _RANDOM_BYTES = 32
    _DISPLAY_PREFIX_LENGTH = 12

    def generate_raw_key(self) -> str:
        """Generate an API key: fixed prefix plus 64 random hex characters."""
        return f"{self._PREFIX}{secrets.token_hex(self._RANDOM_BYTES)}"

    def hash_key(self, raw_key: str) -> str:
        """Hash raw API key using SHA-256 hex digest."""
        return sha256(raw_key.encode("utf-8")).hexdigest()

    def key_prefix(self, raw_key: str) -> str:
        """Return the display prefix: the fixed prefix plus six random characters."""
        return raw_key[: self._DISPLAY_PREFIX_LENGTH]

    def is_api_key(self, candidate: str) -> bool:
        """Return True when a bearer value is shaped like an API key."""
        return candidate.startswith(self._PREFIX)

    def hash_matches(self, expected_hash: str, raw_key: str) -> bool:
        """Constant-time compare between stored hash and raw key hash."""
        candidate_hash = self.hash_key(raw_key)
        return hmac.compare_digest(expected_hash, candidate_hash)
