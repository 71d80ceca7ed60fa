"""User ORM model."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Enum as SAEnum
from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ovo_api.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from ovo_api.models.api_key import APIKey
    from ovo_api.models.refresh_token import RefreshToken


class AuthProvider(str, Enum):
    """Identity providers a user account can be bound to."""

    LOCAL = "local"
    EVENTHORIZON = "eventhorizon"


class User(Base, TimestampMixin):
    """Canonical user record shared by password and delegated login."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_provider: Mapped[AuthProvider] = mapped_column(
        SAEnum(
            AuthProvider,
            name="auth_provider",
            values_callable=lambda enum_type: [item.value for item in enum_type],
        ),
        nullable=False,
        default=AuthProvider.LOCAL,
    )

    refresh_tokens: Mapped[list[RefreshToken]] = relationship(back_populates="user")
    api_keys: Mapped[list[APIKey]] = relationship(back_populates="user")
