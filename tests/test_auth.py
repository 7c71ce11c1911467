import asyncio
import json
import os
import stat
from unittest.mock import AsyncMock, MagicMock

import pytest

from punchclock.auth import AuthContext
from punchclock.credentials import USER_KEY, FileCredentialStore, MemoryCredentialStore
from punchclock.errors import LoginFailed
from punchclock.models import Identity

IDENTITY = Identity(id="42", name="Ada", email="ada@example.com", company_id="7")


def make_backend(identity=IDENTITY):
    backend = MagicMock()
    backend.login = AsyncMock(return_value=identity)
    return backend


def test_login_persists_identity_and_logout_clears_it():
    store = MemoryCredentialStore()
    auth = AuthContext(make_backend(), store)

    async def scenario():
        await auth.login("ada@example.com", "secret", "7")
        stored = await store.get(USER_KEY)
        await auth.logout()
        return stored, await store.get(USER_KEY)

    stored, after_logout = asyncio.run(scenario())

    assert json.loads(stored) == {"id": "42", "name": "Ada", "email": "ada@example.com", "companyId": "7"}
    assert after_logout is None
    assert auth.identity is None
    assert auth.is_authenticated is False


def test_failed_login_leaves_store_untouched():
    backend = MagicMock()
    backend.login = AsyncMock(side_effect=LoginFailed("Invalid credentials"))
    store = MemoryCredentialStore()
    auth = AuthContext(backend, store)

    async def scenario():
        with pytest.raises(LoginFailed):
            await auth.login("ada@example.com", "wrong", "7")
        return await store.get(USER_KEY)

    assert asyncio.run(scenario()) is None
    assert auth.identity is None


def test_rehydrate_restores_stored_identity():
    store = MemoryCredentialStore({USER_KEY: json.dumps(IDENTITY.to_record())})
    auth = AuthContext(make_backend(), store)

    identity = asyncio.run(auth.rehydrate())

    assert identity == IDENTITY
    assert auth.identity == IDENTITY


def test_rehydrate_discards_corrupt_record():
    store = MemoryCredentialStore({USER_KEY: '{"name": "no id"}'})
    auth = AuthContext(make_backend(), store)

    async def scenario():
        identity = await auth.rehydrate()
        return identity, await store.get(USER_KEY)

    identity, remaining = asyncio.run(scenario())

    assert identity is None
    assert remaining is None


def test_file_store_round_trips_and_restricts_permissions(tmp_path):
    path = tmp_path / "nested" / "user.json"
    store = FileCredentialStore(path)

    async def scenario():
        assert await store.get(USER_KEY) is None
        await store.set(USER_KEY, "value")
        await store.set("other", "kept")
        first = await store.get(USER_KEY)
        await store.remove(USER_KEY)
        await store.remove("missing")
        return first, await store.get(USER_KEY), await store.get("other")

    first, removed, other = asyncio.run(scenario())

    assert (first, removed, other) == ("value", None, "kept")
    if os.name != "nt":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_file_store_ignores_unreadable_file(tmp_path):
    path = tmp_path / "user.json"
    path.write_text("{not json", encoding="utf-8")

    assert asyncio.run(FileCredentialStore(path).get(USER_KEY)) is None
