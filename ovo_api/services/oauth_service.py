"""OAuth service orchestration for Event Horizon delegated login."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from ovo_api.config import get_settings
from ovo_api.core.jwt import JWTService, TokenValidationError, get_jwt_service
from ovo_api.core.oauth import (
    EventHorizonOAuthClient,
    OAuthProtocolError,
    get_eventhorizon_client,
)
from ovo_api.core.refresh_tokens import TokenPair
from ovo_api.db.credential_store import (
    CredentialConflictError,
    CredentialStore,
    get_credential_store,
)
from ovo_api.errors import ServiceError
from ovo_api.models.user import AuthProvider, User
from ovo_api.services.token_service import TokenService, get_token_service

logger = structlog.get_logger(__name__)

_MAX_NAME_LENGTH = 50


@dataclass(frozen=True)
class OAuthStateRecord:
    """Decoded OAuth state payload carried through the provider round trip."""

    nonce: str
    code_verifier: str
    redirect_uri: str


@dataclass(frozen=True)
class OAuthCallbackResult:
    """Outcome of a completed callback."""

    user: User
    redirect_uri: str
    tokens: TokenPair
    created: bool
    linked: bool


class OAuthServiceError(ServiceError):
    """Raised when OAuth flow orchestration fails."""


def derive_display_name(profile: dict[str, Any], email: str) -> str:
    """Pick a display name from provider profile fields, falling back to the email local part."""
    candidates: list[str] = []
    name = profile.get("name")
    if isinstance(name, str):
        candidates.append(name)
    for first_key, last_key in (("given_name", "family_name"), ("first_name", "last_name")):
        parts = [profile.get(first_key), profile.get(last_key)]
        joined = " ".join(part.strip() for part in parts if isinstance(part, str) and part.strip())
        candidates.append(joined)
    for key in ("username", "preferred_username"):
        value = profile.get(key)
        if isinstance(value, str):
            candidates.append(value)
    candidates.append(email.split("@", 1)[0])

    for candidate in candidates:
        stripped = candidate.strip()
        if stripped:
            return stripped[:_MAX_NAME_LENGTH]
    return email[:_MAX_NAME_LENGTH]


def append_query_params(url: str, params: dict[str, str]) -> str:
    """Append query parameters to ``url`` while keeping any existing ones."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuthService:
    """Coordinates signed OAuth state, code exchange, and account resolution."""

    def __init__(
        self,
        oauth_client: EventHorizonOAuthClient,
        jwt_service: JWTService,
        token_service: TokenService,
        store: CredentialStore,
        state_ttl_seconds: int,
        require_verified_email: bool = False,
    ) -> None:
        self._oauth_client = oauth_client
        self._jwt_service = jwt_service
        self._token_service = token_service
        self._store = store
        self._state_ttl_seconds = state_ttl_seconds
        self._require_verified_email = require_verified_email

    async def build_login_url(self, redirect_uri: str | None) -> str:
        """Validate the client redirect and build the provider authorization URL."""
        try:
            resolved_redirect_uri = self._oauth_client.resolve_redirect_uri(redirect_uri)
        except OAuthProtocolError as exc:
            raise OAuthServiceError(exc.detail, exc.code, exc.status_code) from exc
        # The nonce only makes each state unique; decode_state does not track it.
        nonce = self._oauth_client.generate_nonce()
        code_verifier = self._oauth_client.generate_code_verifier()
        state = self._jwt_service.issue_token(
            subject=nonce,
            token_type="oauth_state",
            expires_in_seconds=self._state_ttl_seconds,
            additional_claims={
                "redirect_uri": resolved_redirect_uri,
                "nonce": nonce,
                "code_verifier": code_verifier,
            },
        )
        try:
            return await self._oauth_client.create_authorization_url(
                state=state,
                nonce=nonce,
                code_verifier=code_verifier,
            )
        except OAuthProtocolError as exc:
            raise OAuthServiceError(exc.detail, exc.code, exc.status_code) from exc

    async def complete_callback(
        self,
        db_session: AsyncSession,
        state: str,
        code: str,
    ) -> OAuthCallbackResult:
        """Exchange the code, resolve the local account, and issue tokens."""
        state_record = self.decode_state(state)
        try:
            provider_token = await self._oauth_client.exchange_code_for_token(
                code=code, code_verifier=state_record.code_verifier
            )
            profile = await self._oauth_client.fetch_profile(provider_token)
        except OAuthProtocolError as exc:
            raise OAuthServiceError(exc.detail, exc.code, exc.status_code) from exc

        email = profile.get("email")
        if not isinstance(email, str) or not email.strip():
            raise OAuthServiceError(
                "Event Horizon account has no email address", "oauth_profile_invalid", 400
            )
        if self._require_verified_email and profile.get("email_verified") is False:
            raise OAuthServiceError(
                "Event Horizon email address is not verified", "oauth_profile_invalid", 400
            )
        normalized_email = email.strip().lower()

        user, created, linked = await self._resolve_user(
            db_session=db_session, email=normalized_email, profile=profile
        )
        tokens = await self._token_service.issue_token_pair(db_session=db_session, user_id=user.id)
        return OAuthCallbackResult(
            user=user,
            redirect_uri=state_record.redirect_uri,
            tokens=tokens,
            created=created,
            linked=linked,
        )

    def decode_state(self, state: str) -> OAuthStateRecord:
        """Verify the signed state and return its payload.

        The nonce is not recorded server-side, so a captured state can be replayed
        until it expires; the short state TTL is the only replay bound.
        """
        try:
            claims = self._jwt_service.verify_token(state, expected_type="oauth_state")
        except TokenValidationError as exc:
            raise OAuthServiceError(
                "Invalid or expired OAuth state", "oauth_state_invalid", 400
            ) from exc

        values = [claims.get(key) for key in ("nonce", "code_verifier", "redirect_uri")]
        if not all(isinstance(value, str) and value for value in values):
            raise OAuthServiceError("Invalid or expired OAuth state", "oauth_state_invalid", 400)
        record = OAuthStateRecord(
            nonce=str(values[0]), code_verifier=str(values[1]), redirect_uri=str(values[2])
        )
        try:
            self._oauth_client.resolve_redirect_uri(record.redirect_uri)
        except OAuthProtocolError as exc:
            raise OAuthServiceError(
                "Invalid or expired OAuth state", "oauth_state_invalid", 400
            ) from exc
        return record

    @staticmethod
    def build_client_redirect(redirect_uri: str, tokens: TokenPair) -> str:
        """Attach issued tokens to the client redirect URI."""
        return append_query_params(
            redirect_uri,
            {"access_token": tokens.access_token, "refresh_token": tokens.refresh_token},
        )

    async def _resolve_user(
        self,
        db_session: AsyncSession,
        email: str,
        profile: dict[str, Any],
    ) -> tuple[User, bool, bool]:
        """Find or create the local user for a provider email.

        Returns the user plus whether it was created and whether an existing
        account was re-bound to Event Horizon.
        """
        user = await self._store.get_user_by_email(db_session=db_session, email=email)
        if user is None:
            try:
                user = await self._store.add_user(
                    db_session=db_session,
                    name=derive_display_name(profile, email),
                    email=email,
                    password_hash=None,
                    auth_provider=AuthProvider.EVENTHORIZON,
                )
            except CredentialConflictError:
                # Another request created the account first.
                user = await self._store.get_user_by_email(db_session=db_session, email=email)
                if user is None:
                    raise
            else:
                logger.info("oauth_user_created", user_id=str(user.id))
                return user, True, False

        if user.auth_provider != AuthProvider.EVENTHORIZON:
            await self._store.set_auth_provider(
                db_session=db_session, user=user, auth_provider=AuthProvider.EVENTHORIZON
            )
            logger.info("oauth_user_linked", user_id=str(user.id))
            return user, False, True
        return user, False, False


@lru_cache
def get_oauth_service() -> OAuthService:
    """Build and cache OAuth service dependencies."""
    settings = get_settings()
    return OAuthService(
        oauth_client=get_eventhorizon_client(),
        jwt_service=get_jwt_service(),
        token_service=get_token_service(),
        store=get_credential_store(),
        state_ttl_seconds=settings.jwt.oauth_state_ttl_seconds,
        require_verified_email=settings.oauth.require_verified_email,
    )
