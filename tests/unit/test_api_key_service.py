"""Unit tests for API key core and service logic."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from hashlib import sha256
from uuid import uuid4

import pytest

from ovo_api.core.api_keys import APIKeyCore
from ovo_api.core.background import DetachedTaskSupervisor
from ovo_api.services.api_key_service import APIKeyService, APIKeyServiceError


@pytest.fixture
def supervisor() -> DetachedTaskSupervisor:
    """Provide a fresh detached task supervisor."""
    return DetachedTaskSupervisor()


@pytest.fixture
def api_key_service(credential_store, supervisor, fake_session_factory) -> APIKeyService:
    """Build API key service over the in-memory store."""
    return APIKeyService(
        core=APIKeyCore(),
        store=credential_store,
        supervisor=supervisor,
        session_factory=fake_session_factory,
    )


def test_core_generate_key_format() -> None:
    """Generated keys carry the ovo_k_ prefix and 64 hex characters."""
    core = APIKeyCore()
    raw_key = core.generate_raw_key()

    assert raw_key.startswith("ovo_k_")
    assert len(raw_key) == 70
    int(raw_key[len("ovo_k_") :], 16)
    assert core.key_prefix(raw_key) == raw_key[:12]
    assert core.hash_key(raw_key) == sha256(raw_key.encode("utf-8")).hexdigest()
    assert core.is_api_key(raw_key) is True
    assert core.is_api_key("eyJhbGciOiJIUzI1NiJ9.payload.sig") is False


@pytest.mark.asyncio
async def test_create_returns_raw_key_once_and_stores_only_hash(
    api_key_service: APIKeyService, credential_store, fake_db_session
) -> None:
    """The raw key is returned but only its hash and display prefix are stored."""
    user_id = uuid4()

    created = await api_key_service.create_key(
        db_session=fake_db_session, user_id=user_id, name="  CI bot  "
    )

    row = credential_store.api_keys[created.id]
    assert created.name == "CI bot"
    assert created.key.startswith("ovo_k_")
    assert created.key_prefix == created.key[:12]
    assert row.key_hash == sha256(created.key.encode("utf-8")).hexdigest()
    assert created.key not in {row.key_hash, row.key_prefix, row.name}
    assert fake_db_session.commit_count == 1


@pytest.mark.asyncio
async def test_created_keys_are_unique(api_key_service: APIKeyService, fake_db_session) -> None:
    """Every created key has a distinct raw value."""
    user_id = uuid4()
    keys = [
        (await api_key_service.create_key(db_session=fake_db_session, user_id=user_id, name=f"k{i}")).key
        for i in range(5)
    ]

    assert len(set(keys)) == 5


@pytest.mark.asyncio
async def test_eleventh_key_exceeds_quota(api_key_service: APIKeyService, fake_db_session) -> None:
    """A user may hold at most ten keys."""
    user_id = uuid4()
    for index in range(10):
        await api_key_service.create_key(
            db_session=fake_db_session, user_id=user_id, name=f"key-{index}"
        )

    with pytest.raises(APIKeyServiceError) as exc_info:
        await api_key_service.create_key(db_session=fake_db_session, user_id=user_id, name="extra")

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "api_key_quota_exceeded"
    assert exc_info.value.detail == "Maximum of 10 API keys per user"

    other_user_key = await api_key_service.create_key(
        db_session=fake_db_session, user_id=uuid4(), name="unaffected"
    )
    assert other_user_key.key.startswith("ovo_k_")


@pytest.mark.asyncio
async def test_revoke_frees_quota_slot(
    api_key_service: APIKeyService, fake_db_session
) -> None:
    """After the quota is hit, revoking one key allows one more create."""
    user_id = uuid4()
    created = [
        await api_key_service.create_key(db_session=fake_db_session, user_id=user_id, name=f"k{i}")
        for i in range(10)
    ]

    await api_key_service.revoke_key(
        db_session=fake_db_session, user_id=user_id, key_id=created[0].id
    )
    replacement = await api_key_service.create_key(
        db_session=fake_db_session, user_id=user_id, name="replacement"
    )

    assert replacement.id not in {key.id for key in created}


@pytest.mark.asyncio
async def test_list_is_newest_first_and_owner_scoped(
    api_key_service: APIKeyService, credential_store, fake_db_session
) -> None:
    """Listing only returns the caller's keys, newest first."""
    user_id = uuid4()
    older = await api_key_service.create_key(db_session=fake_db_session, user_id=user_id, name="old")
    newer = await api_key_service.create_key(db_session=fake_db_session, user_id=user_id, name="new")
    await api_key_service.create_key(db_session=fake_db_session, user_id=uuid4(), name="other")
    credential_store.api_keys[older.id].created_at = datetime.now(UTC) - timedelta(days=1)

    rows = await api_key_service.list_keys(db_session=fake_db_session, user_id=user_id)

    assert [row.id for row in rows] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_revoke_foreign_or_missing_key_is_not_found(
    api_key_service: APIKeyService, credential_store, fake_db_session
) -> None:
    """Revoking someone else's key is indistinguishable from a missing key."""
    owner_id = uuid4()
    created = await api_key_service.create_key(
        db_session=fake_db_session, user_id=owner_id, name="mine"
    )

    for key_id in (created.id, uuid4()):
        with pytest.raises(APIKeyServiceError) as exc_info:
            await api_key_service.revoke_key(
                db_session=fake_db_session, user_id=uuid4(), key_id=key_id
            )
        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "api_key_not_found"

    assert created.id in credential_store.api_keys


@pytest.mark.asyncio
async def test_validate_resolves_owner_and_touches_last_used(
    api_key_service: APIKeyService, credential_store, supervisor, fake_db_session
) -> None:
    """A known key resolves to its owner and records usage in the background."""
    user_id = uuid4()
    created = await api_key_service.create_key(
        db_session=fake_db_session, user_id=user_id, name="cli"
    )

    validated = await api_key_service.validate(db_session=fake_db_session, raw_key=created.key)
    await supervisor.drain(timeout_seconds=1)

    assert validated is not None
    assert validated.user_id == user_id
    assert validated.key_id == created.id
    assert credential_store.api_keys[created.id].last_used_at is not None
    assert [key_id for key_id, _ in credential_store.touched] == [created.id]


@pytest.mark.asyncio
async def test_validate_unknown_or_unprefixed_key_returns_none(
    api_key_service: APIKeyService, credential_store, supervisor, fake_db_session
) -> None:
    """Unknown keys and non-key values validate to None without side effects."""
    assert await api_key_service.validate(db_session=fake_db_session, raw_key="ovo_k_" + "0" * 64) is None
    assert await api_key_service.validate(db_session=fake_db_session, raw_key="not-a-key") is None

    assert supervisor.pending == 0
    assert credential_store.touched == []


@pytest.mark.asyncio
async def test_validate_survives_usage_update_failure(
    api_key_service: APIKeyService, credential_store, supervisor, fake_db_session
) -> None:
    """A failing last-used update never affects the validation result."""
    user_id = uuid4()
    created = await api_key_service.create_key(
        db_session=fake_db_session, user_id=user_id, name="cli"
    )
    credential_store.fail_touch = True

    validated = await api_key_service.validate(db_session=fake_db_session, raw_key=created.key)
    await supervisor.drain(timeout_seconds=1)

    assert validated is not None
    assert validated.user_id == user_id
    assert supervisor.pending == 0
