"""Token request/response schemas."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from ovo_api.schemas.common import CamelModel


class TokenPairResponse(CamelModel):
    """Access/refresh token pair."""

    access_token: str
    refresh_token: str


class RefreshTokenRequest(CamelModel):
    """Refresh token request payload."""

    refresh_token: str = Field(min_length=1)


class LogoutRequest(CamelModel):
    """Logout request payload; the token is optional."""

    refresh_token: str | None = None

    @field_validator("refresh_token", mode="before")
    @classmethod
    def ignore_non_string_token(cls, value: Any) -> str | None:
        """Logout never fails, so a token of the wrong type is treated as absent."""
        return value if isinstance(value, str) else None
