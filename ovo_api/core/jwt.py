"""JWT issuance and verification for access and OAuth state tokens."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any, Literal
from uuid import uuid4

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from ovo_api.config import get_settings
from ovo_api.errors import ConfigurationError, ServiceError

TokenType = Literal["access", "oauth_state"]
JWT_ALGORITHM = "HS256"
_SUPPORTED_TOKEN_TYPES: tuple[str, ...] = ("access", "oauth_state")


class TokenValidationError(ServiceError):
    """Raised when JWT validation fails."""

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail, code, 401)


class JWTService:
    """Service for issuing and verifying HS256 JWT tokens."""

    def __init__(self, secret_key: str | None) -> None:
        self._secret_key = secret_key

    def issue_token(
        self,
        subject: str,
        token_type: TokenType,
        expires_in_seconds: int,
        additional_claims: dict[str, Any] | None = None,
    ) -> str:
        """Issue a signed JWT with required claims."""
        secret_key = self._require_secret()
        issued_at = datetime.now(UTC)
        expires_at = issued_at + timedelta(seconds=expires_in_seconds)
        payload: dict[str, Any] = {
            "jti": str(uuid4()),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "sub": subject,
            "type": token_type,
        }
        # Registered claims above cannot be overridden by callers.
        extra = {k: v for k, v in (additional_claims or {}).items() if k not in payload}
        return jwt.encode({**extra, **payload}, secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Verify token signature, expiry, and type."""
        secret_key = self._require_secret()
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenValidationError("Invalid token", "invalid_token") from exc
        algorithm = str(header.get("alg", ""))
        if algorithm != JWT_ALGORITHM:
            raise TokenValidationError("Invalid token", "invalid_token")

        try:
            payload = jwt.decode(
                token,
                secret_key,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_aud": False,
                    "require_jti": True,
                    "require_iat": True,
                    "require_exp": True,
                    "require_sub": True,
                },
            )
        except ExpiredSignatureError as exc:
            raise TokenValidationError("Token expired", "token_expired") from exc
        except JWTError as exc:
            raise TokenValidationError("Invalid token", "invalid_token") from exc

        token_type = str(payload.get("type", ""))
        if token_type not in _SUPPORTED_TOKEN_TYPES:
            raise TokenValidationError("Invalid token", "invalid_token")
        if expected_type and token_type != expected_type:
            raise TokenValidationError("Invalid token", "invalid_token")
        return payload

    def _require_secret(self) -> str:
        """Return the signing secret or fail as a configuration error."""
        if not self._secret_key:
            raise ConfigurationError("JWT__SECRET_KEY")
        return self._secret_key


@lru_cache
def get_jwt_service() -> JWTService:
    """Build and cache the JWT service from application settings."""
    secret = get_settings().jwt.secret_key
    return JWTService(secret_key=secret.get_secret_value() if secret is not None else None)
