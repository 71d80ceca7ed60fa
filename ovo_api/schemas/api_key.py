"""API key request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator

from ovo_api.schemas.common import CamelModel


class APIKeyCreateRequest(CamelModel):
    """Create API key request payload."""

    name: str = Field(min_length=1, max_length=50)

    @field_validator("name", mode="before")
    @classmethod
    def strip_whitespace(cls, value: Any) -> Any:
        """Trim surrounding whitespace before length checks."""
        return value.strip() if isinstance(value, str) else value


class APIKeyCreateResponse(CamelModel):
    """Create API key response containing raw key one time."""

    id: UUID
    name: str
    key_prefix: str
    created_at: datetime
    key: str


class APIKeyListItem(CamelModel):
    """Listed API key; never includes the raw key or its hash."""

    id: UUID
    name: str
    key_prefix: str
    last_used_at: datetime | None
    created_at: datetime
