"""Integration fixtures: in-memory app wiring plus Postgres/Redis testcontainers."""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from fastapi import FastAPI
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from docker.errors import DockerException

from ovo_api.core.api_keys import APIKeyCore
from ovo_api.core.background import DetachedTaskSupervisor
from ovo_api.core.jwt import JWTService
from ovo_api.core.passwords import PasswordHasher
from ovo_api.core.refresh_tokens import RefreshTokenManager
from ovo_api.core.request_auth import RequestAuthenticator
from ovo_api.dependencies import get_database_session, get_request_authenticator
from ovo_api.error_handlers import register_exception_handlers
from ovo_api.routers import apikeys, auth, user
from ovo_api.services.api_key_service import APIKeyService, get_api_key_service
from ovo_api.services.token_service import TokenService, get_token_service
from ovo_api.services.user_service import UserService, get_user_service

INTEGRATION_JWT_SECRET = "integration-jwt-secret-value"
INTEGRATION_REDIRECT_URI = "http://localhost:5173/auth/complete"


@dataclass
class MemoryAPI:
    """App wired to in-memory collaborators, plus handles for assertions."""

    app: FastAPI
    store: Any
    jwt_service: JWTService
    token_service: TokenService
    api_key_service: APIKeyService
    supervisor: DetachedTaskSupervisor


@pytest.fixture
def memory_api(credential_store, fake_session_factory) -> MemoryAPI:
    """Build the auth, key, and profile routers over the in-memory credential store."""
    jwt_service = JWTService(secret_key=INTEGRATION_JWT_SECRET)
    token_service = TokenService(
        jwt_service=jwt_service,
        refresh_token_manager=RefreshTokenManager(
            store=credential_store, refresh_token_ttl_seconds=604800
        ),
        access_token_ttl_seconds=900,
    )
    supervisor = DetachedTaskSupervisor()
    api_key_service = APIKeyService(
        core=APIKeyCore(),
        store=credential_store,
        supervisor=supervisor,
        session_factory=fake_session_factory,
    )
    user_service = UserService(store=credential_store, password_hasher=PasswordHasher(rounds=4))
    authenticator = RequestAuthenticator(
        api_key_core=APIKeyCore(),
        api_key_service=api_key_service,
        token_service=token_service,
    )

    async def _fake_db_dependency() -> AsyncIterator[Any]:
        async with fake_session_factory() as session:
            yield session

    app = FastAPI()
    register_exception_handlers(app, environment="production")
    for router in (auth.router, apikeys.router, user.router):
        app.include_router(router, prefix="/api")
    app.dependency_overrides[get_database_session] = _fake_db_dependency
    app.dependency_overrides[get_user_service] = lambda: user_service
    app.dependency_overrides[get_token_service] = lambda: token_service
    app.dependency_overrides[get_api_key_service] = lambda: api_key_service
    app.dependency_overrides[get_request_authenticator] = lambda: authenticator
    return MemoryAPI(
        app=app,
        store=credential_store,
        jwt_service=jwt_service,
        token_service=token_service,
        api_key_service=api_key_service,
        supervisor=supervisor,
    )


def _clear_dependency_caches() -> None:
    """Clear all cached singletons so they are rebuilt from current settings."""
    from ovo_api.config import get_settings
    from ovo_api.core.background import get_task_supervisor
    from ovo_api.core.jwt import get_jwt_service
    from ovo_api.core.oauth import get_eventhorizon_client
    from ovo_api.core.passwords import get_password_hasher
    from ovo_api.core.refresh_tokens import get_refresh_token_manager
    from ovo_api.db.credential_store import get_credential_store
    from ovo_api.db.redis import get_redis_client
    from ovo_api.db.session import get_engine, get_session_factory
    from ovo_api.services.audit_service import get_audit_service
    from ovo_api.services.oauth_service import get_oauth_service

    for cached in (
        get_settings,
        get_engine,
        get_session_factory,
        get_redis_client,
        get_jwt_service,
        get_password_hasher,
        get_credential_store,
        get_refresh_token_manager,
        get_task_supervisor,
        get_eventhorizon_client,
        get_token_service,
        get_user_service,
        get_api_key_service,
        get_audit_service,
        get_oauth_service,
        get_request_authenticator,
    ):
        cached.cache_clear()


async def _dispose_async_singletons() -> None:
    """Dispose loop-bound async resources before changing event loops."""
    from ovo_api.core.background import get_task_supervisor
    from ovo_api.db.redis import close_redis_client
    from ovo_api.db.session import dispose_engine, get_engine

    if get_task_supervisor.cache_info().currsize:
        await get_task_supervisor().drain(timeout_seconds=5)
    await close_redis_client()
    if get_engine.cache_info().currsize:
        await dispose_engine()


def _redis_connection_url(redis: RedisContainer) -> str:
    """Return a redis:// URL across testcontainers versions."""
    get_url = getattr(redis, "get_connection_url", None)
    if callable(get_url):
        redis_url = get_url()
    else:
        host = redis.get_container_host_ip()
        port = redis.get_exposed_port(6379)
        redis_url = f"redis://{host}:{port}"
    if not redis_url.endswith("/0"):
        redis_url = f"{redis_url}/0"
    return redis_url


def _postgres_async_url(postgres: PostgresContainer) -> str:
    """Return a postgresql+asyncpg URL across testcontainers versions."""
    try:
        postgres_url = postgres.get_connection_url(driver=None)
    except TypeError:
        postgres_url = postgres.get_connection_url()

    if postgres_url.startswith("postgresql+"):
        postgres_url = "postgresql://" + postgres_url.split("://", 1)[1]

    return postgres_url.replace("postgresql://", "postgresql+asyncpg://", 1)


def _set_env_values(env_values: dict[str, str]) -> Callable[[], None]:
    """Apply env vars and return a restore callback."""
    original = {key: os.environ.get(key) for key in env_values}
    os.environ.update(env_values)

    def _restore() -> None:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    return _restore


@pytest.fixture(scope="session")
def integration_env() -> Iterator[dict[str, str]]:
    """Start Postgres/Redis containers and configure app settings for integration tests."""
    try:
        postgres = PostgresContainer("postgres:16")
        redis = RedisContainer("redis:7")
        postgres.start()
        redis.start()
    except DockerException as exc:
        if os.environ.get("CI", "").lower() in {"1", "true", "yes"}:
            pytest.fail(
                f"Docker daemon unavailable in CI for testcontainers-backed integration tests: {exc}"
            )
        pytest.skip(f"Docker daemon unavailable for testcontainers-backed integration tests: {exc}")

    database_url = _postgres_async_url(postgres)
    redis_url = _redis_connection_url(redis)

    env_values = {
        "APP__ENVIRONMENT": "development",
        "APP__SERVICE": "ovo-api",
        "APP__LOG_LEVEL": "INFO",
        "DATABASE__URL": database_url,
        "REDIS__URL": redis_url,
        "JWT__SECRET_KEY": INTEGRATION_JWT_SECRET,
        "PASSWORDS__BCRYPT_ROUNDS": "4",
        "OAUTH__CLIENT_ID": "integration-client-id",
        "OAUTH__CLIENT_SECRET": "integration-client-secret",
        "OAUTH__AUTHORIZE_URL": "https://id.eventhorizon.test/oauth/authorize",
        "OAUTH__TOKEN_URL": "https://id.eventhorizon.test/oauth/token",
        "OAUTH__USERINFO_URL": "https://id.eventhorizon.test/oauth/userinfo",
        "OAUTH__CALLBACK_URL": "http://testserver/api/auth/eventhorizon/callback",
        "OAUTH__REDIRECT_URI_ALLOWLIST": f'["{INTEGRATION_REDIRECT_URI}"]',
        "RATE_LIMIT__DEFAULT_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__LOGIN_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__TOKEN_REQUESTS_PER_MINUTE": "10000",
    }

    restore_env = _set_env_values(env_values)
    _clear_dependency_caches()

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")

    try:
        yield {"database_url": database_url, "redis_url": redis_url}
    finally:
        try:
            _clear_dependency_caches()
        finally:
            restore_env()
            postgres.stop()
            redis.stop()


@pytest.fixture(scope="function")
async def reset_state(integration_env: dict[str, str]) -> AsyncIterator[None]:
    """Clear DB tables and flush Redis; isolate async singletons per event loop."""
    del integration_env
    from ovo_api.db.redis import get_redis_client
    from ovo_api.db.session import get_session_factory
    from ovo_api.models.api_key import APIKey
    from ovo_api.models.refresh_token import RefreshToken
    from ovo_api.models.user import User

    await _dispose_async_singletons()
    _clear_dependency_caches()

    session_factory = get_session_factory()
    async with session_factory() as session:
        await session.execute(delete(APIKey))
        await session.execute(delete(RefreshToken))
        await session.execute(delete(User))
        await session.commit()

    await get_redis_client().flushdb()
    try:
        yield
    finally:
        await _dispose_async_singletons()
        _clear_dependency_caches()


@pytest.fixture(scope="function")
async def db_session_factory(reset_state: None) -> async_sessionmaker[AsyncSession]:
    """Expose async session factory bound to integration Postgres."""
    del reset_state
    from ovo_api.db.session import get_session_factory

    return get_session_factory()


@pytest.fixture(scope="function")
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a write-capable async DB session for test seeding and assertions."""
    async with db_session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def app_factory(reset_state: None) -> Callable[[], FastAPI]:
    """Build isolated full-stack FastAPI app instances for integration tests."""
    del reset_state
    from ovo_api.main import create_app

    def _factory() -> FastAPI:
        return create_app()

    return _factory
