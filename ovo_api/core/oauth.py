"""Event Horizon OAuth 2.0 protocol operations via authlib."""

from __future__ import annotations

import secrets
from functools import lru_cache
from typing import Any

from authlib.integrations.httpx_client import AsyncOAuth2Client

from ovo_api.config import OAuthSettings, get_settings
from ovo_api.errors import ConfigurationError, ServiceError


class OAuthProtocolError(ServiceError):
    """Raised when OAuth protocol operations fail."""


class EventHorizonOAuthClient:
    """Authlib-backed client for the Event Horizon identity provider."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        authorize_url: str | None,
        token_url: str | None,
        userinfo_url: str | None,
        callback_url: str | None,
        scope: str,
        redirect_uri_allowlist: list[str],
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._authorize_url = authorize_url
        self._token_url = token_url
        self._userinfo_url = userinfo_url
        self._callback_url = callback_url
        self._scope = scope
        self._redirect_uri_allowlist = redirect_uri_allowlist

    def resolve_redirect_uri(self, redirect_uri: str | None) -> str:
        """Return ``redirect_uri`` when it exactly matches an allow-listed value."""
        if redirect_uri:
            for allowed in self._redirect_uri_allowlist:
                if redirect_uri == allowed:
                    return redirect_uri
        raise OAuthProtocolError("Invalid redirect URI", "invalid_redirect_uri", 400)

    def generate_nonce(self) -> str:
        """Generate a random nonce."""
        return secrets.token_urlsafe(32)

    def generate_code_verifier(self) -> str:
        """Generate PKCE code verifier."""
        return secrets.token_urlsafe(64)

    async def create_authorization_url(self, state: str, nonce: str, code_verifier: str) -> str:
        """Build the provider authorization URL with S256 PKCE parameters."""
        authorize_url = self._require("OAUTH__AUTHORIZE_URL", self._authorize_url)
        client = self._build_client()
        try:
            authorization_url, _ = client.create_authorization_url(
                authorize_url,
                state=state,
                nonce=nonce,
                code_verifier=code_verifier,
            )
        finally:
            await client.aclose()
        return str(authorization_url)

    async def exchange_code_for_token(self, code: str, code_verifier: str) -> dict[str, Any]:
        """Exchange an authorization code for the provider token payload."""
        token_url = self._require("OAUTH__TOKEN_URL", self._token_url)
        client = self._build_client()
        try:
            token = await client.fetch_token(
                token_url,
                grant_type="authorization_code",
                code=code,
                code_verifier=code_verifier,
                redirect_uri=self._callback_url,
            )
        except Exception as exc:
            raise OAuthProtocolError(
                "Failed to exchange authorization code", "upstream_failure", 502
            ) from exc
        finally:
            await client.aclose()
        if not token.get("access_token"):
            raise OAuthProtocolError(
                "Failed to exchange authorization code", "upstream_failure", 502
            )
        return dict(token)

    async def fetch_profile(self, token: dict[str, Any]) -> dict[str, Any]:
        """Fetch the user profile with the provider access token."""
        userinfo_url = self._require("OAUTH__USERINFO_URL", self._userinfo_url)
        client = self._build_client(token=token)
        try:
            response = await client.get(userinfo_url)
            response.raise_for_status()
            profile = response.json()
        except Exception as exc:
            raise OAuthProtocolError(
                "Failed to fetch user profile", "upstream_failure", 502
            ) from exc
        finally:
            await client.aclose()
        if not isinstance(profile, dict):
            raise OAuthProtocolError("Failed to fetch user profile", "upstream_failure", 502)
        return profile

    def _build_client(self, token: dict[str, Any] | None = None) -> AsyncOAuth2Client:
        """Build authlib OAuth2 client for the provider endpoints."""
        client_id = self._require("OAUTH__CLIENT_ID", self._client_id)
        client_secret = self._require("OAUTH__CLIENT_SECRET", self._client_secret)
        callback_url = self._require("OAUTH__CALLBACK_URL", self._callback_url)
        return AsyncOAuth2Client(
            client_id=client_id,
            client_secret=client_secret,
            scope=self._scope,
            redirect_uri=callback_url,
            token=token,
            token_endpoint_auth_method="client_secret_post",
            code_challenge_method="S256",
            timeout=10.0,
        )

    @staticmethod
    def _require(setting: str, value: str | None) -> str:
        if not value:
            raise ConfigurationError(setting)
        return value


def build_eventhorizon_client(settings: OAuthSettings) -> EventHorizonOAuthClient:
    """Build an Event Horizon client from OAuth settings."""
    client_secret = settings.client_secret
    return EventHorizonOAuthClient(
        client_id=settings.client_id,
        client_secret=client_secret.get_secret_value() if client_secret is not None else None,
        authorize_url=settings.authorize_url,
        token_url=settings.token_url,
        userinfo_url=settings.userinfo_url,
        callback_url=settings.callback_url,
        scope=settings.scope,
        redirect_uri_allowlist=list(settings.redirect_uri_allowlist),
    )


@lru_cache
def get_eventhorizon_client() -> EventHorizonOAuthClient:
    """Build and cache the Event Horizon client from settings."""
    return build_eventhorizon_client(get_settings().oauth)
