"""User and credential request/response schemas."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import EmailStr, Field, field_validator

from ovo_api.schemas.common import CamelModel
from ovo_api.schemas.token import TokenPairResponse

_PASSWORD_COMPLEXITY = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class RegisterRequest(CamelModel):
    """Local account registration payload."""

    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)

    @field_validator("name", "email", mode="before")
    @classmethod
    def strip_whitespace(cls, value: Any) -> Any:
        """Trim surrounding whitespace before length and format checks."""
        return _strip(value)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        """Store and compare emails in lower case."""
        return value.lower()

    @field_validator("password")
    @classmethod
    def check_complexity(cls, value: str) -> str:
        """Require upper-case, lower-case, and digit characters."""
        if not _PASSWORD_COMPLEXITY.match(value):
            raise ValueError(
                "Password must contain at least one uppercase letter, "
                "one lowercase letter, and one number"
            )
        return value


class LoginRequest(CamelModel):
    """Password login request payload."""

    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def strip_whitespace(cls, value: Any) -> Any:
        """Trim surrounding whitespace before format checks."""
        return _strip(value)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        """Compare emails in lower case."""
        return value.lower()


class UserResponse(CamelModel):
    """Public user profile."""

    id: UUID
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


class AuthResponse(CamelModel):
    """Register/login payload: the user and a fresh token pair."""

    user: UserResponse
    tokens: TokenPairResponse


def to_user_response(user: Any) -> UserResponse:
    """Project a user row onto the public profile schema."""
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )
