"""Async engine and session lifecycle for the credential store."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ovo_api.config import DatabaseSettings, get_settings


def build_engine(settings: DatabaseSettings) -> AsyncEngine:
    """Create an asyncpg engine sized from database settings."""
    return create_async_engine(
        settings.url,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout_seconds,
        echo=settings.echo,
    )


@lru_cache
def get_engine() -> AsyncEngine:
    """Create the process-wide engine on first use."""
    return build_engine(get_settings().database)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine.

    Sessions never autoflush and keep attribute values after commit so rows
    returned from a service stay readable once the transaction ends.
    """
    return async_sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request; uncommitted work is rolled back on close."""
    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine so it can be rebuilt."""
    if not get_engine.cache_info().currsize:
        return
    await get_engine().dispose()
    get_session_factory.cache_clear()
    get_engine.cache_clear()
