"""ORM model exports."""

from ovo_api.models.api_key import APIKey
from ovo_api.models.refresh_token import RefreshToken
from ovo_api.models.user import AuthProvider, User

__all__ = ["APIKey", "AuthProvider", "RefreshToken", "User"]
