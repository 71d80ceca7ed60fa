"""Integration tests for auth routes with real Postgres and Redis backends."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from ovo_api.core.jwt import get_jwt_service
from ovo_api.models.refresh_token import RefreshToken
from ovo_api.models.user import AuthProvider, User


@pytest.mark.asyncio
async def test_register_login_refresh_logout_happy_path(app_factory, db_session) -> None:
    """Registration, login, rotation, and logout work end-to-end."""
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as client:
        register_response = await client.post(
            "/api/auth/register",
            json={"name": "Ann", "email": "ann@x.com", "password": "Passw0rd"},
        )
        assert register_response.status_code == 201
        registered = register_response.json()["data"]
        claims = get_jwt_service().verify_token(
            registered["tokens"]["accessToken"], expected_type="access"
        )
        assert claims["sub"] == registered["user"]["id"]

        login_response = await client.post(
            "/api/auth/login", json={"email": "ann@x.com", "password": "Passw0rd"}
        )
        assert login_response.status_code == 200
        login_tokens = login_response.json()["data"]["tokens"]

        refresh_response = await client.post(
            "/api/auth/refresh", json={"refreshToken": login_tokens["refreshToken"]}
        )
        assert refresh_response.status_code == 200
        rotated = refresh_response.json()["data"]
        assert rotated["refreshToken"] != login_tokens["refreshToken"]

        replay_response = await client.post(
            "/api/auth/refresh", json={"refreshToken": login_tokens["refreshToken"]}
        )
        assert replay_response.status_code == 401
        assert replay_response.json()["code"] == "invalid_refresh_token"

        logout_response = await client.post(
            "/api/auth/logout", json={"refreshToken": rotated["refreshToken"]}
        )
        assert logout_response.status_code == 200
        second_logout = await client.post(
            "/api/auth/logout", json={"refreshToken": rotated["refreshToken"]}
        )
        assert second_logout.status_code == 200

    user = await db_session.scalar(select(User).where(User.email == "ann@x.com"))
    assert user is not None
    assert user.auth_provider == AuthProvider.LOCAL
    assert user.password_hash is not None and user.password_hash.startswith("$2b$")
    remaining = await db_session.scalar(
        select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user.id)
    )
    assert remaining == 1


@pytest.mark.asyncio
async def test_login_with_wrong_password_is_unauthorized(app_factory) -> None:
    """Wrong passwords produce a generic 401 against the real store."""
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as client:
        await client.post(
            "/api/auth/register",
            json={"name": "Ann", "email": "ann@x.com", "password": "Passw0rd"},
        )
        response = await client.post(
            "/api/auth/login", json={"email": "ann@x.com", "password": "Wr0ngpass"}
        )
        duplicate = await client.post(
            "/api/auth/register",
            json={"name": "Ann Again", "email": "ANN@x.com", "password": "Passw0rd"},
        )

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"
    assert duplicate.status_code == 409


@pytest.mark.asyncio
async def test_concurrent_rotation_of_one_token_succeeds_once(app_factory) -> None:
    """Two simultaneous refreshes of the same token cannot both succeed."""
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as client:
        registered = await client.post(
            "/api/auth/register",
            json={"name": "Ann", "email": "ann@x.com", "password": "Passw0rd"},
        )
        token = registered.json()["data"]["tokens"]["refreshToken"]
        responses = await asyncio.gather(
            client.post("/api/auth/refresh", json={"refreshToken": token}),
            client.post("/api/auth/refresh", json={"refreshToken": token}),
        )

    assert sorted(response.status_code for response in responses) == [200, 401]
