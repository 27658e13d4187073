"""
Unit tests for credential storage.
"""

import pytest

from api.crunchyroll.models import ProfileData, TokenData
from api.crunchyroll.storage import (
    LOCALE_KEY,
    TOKEN_KEY,
    CredentialStore,
    JsonFileStore,
    MemoryStore,
)

pytestmark = pytest.mark.unit


class BrokenStore:
    async def get(self, key):
        raise OSError("disk gone")

    async def set(self, key, value):
        raise OSError("disk gone")

    async def delete(self, key):
        raise OSError("disk gone")


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_set_get_delete(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "creds" / "credentials.json"))

        await store.set("a", {"x": 1})
        await store.set("b", "two")
        assert await store.get("a") == {"x": 1}
        assert await store.get("b") == "two"

        await store.delete("a")
        assert await store.get("a") is None
        assert await store.get("b") == "two"

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        path = str(tmp_path / "credentials.json")
        await JsonFileStore(path).set("locale", "fr-FR")
        assert await JsonFileStore(path).get("locale") == "fr-FR"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        store = JsonFileStore(str(tmp_path / "missing.json"))
        assert await store.get("a") is None
        await store.delete("a")

    @pytest.mark.asyncio
    async def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text("{not json")
        store = JsonFileStore(str(path))

        assert await store.get("a") is None
        await store.set("a", 1)
        assert await store.get("a") == 1


class TestCredentialStore:
    @pytest.mark.asyncio
    async def test_session_scope_preferred(self):
        store = CredentialStore(
            MemoryStore({LOCALE_KEY: "fr-FR"}), MemoryStore({LOCALE_KEY: "de-DE"})
        )
        assert (await store.load()).locale == "fr-FR"

    @pytest.mark.asyncio
    async def test_falls_back_to_extension_scope(self):
        store = CredentialStore(
            MemoryStore(),
            MemoryStore({TOKEN_KEY: {"access_token": "persisted", "expires_at": 1.0}}),
        )
        loaded = await store.load()
        assert loaded.token.access_token == "persisted"
        assert loaded.profile is None

    @pytest.mark.asyncio
    async def test_saves_to_both_scopes(self, tmp_path):
        session = MemoryStore()
        extension = JsonFileStore(str(tmp_path / "credentials.json"))
        store = CredentialStore(session, extension)

        await store.save_token(TokenData(access_token="t", account_id="acct", expires_at=10.0))
        await store.save_profile(ProfileData(profile_id="p"))
        await store.save_locale("en-GB")

        for scope in (session, extension):
            assert (await scope.get(TOKEN_KEY))["access_token"] == "t"
            assert await scope.get(LOCALE_KEY) == "en-GB"

        reloaded = await CredentialStore(MemoryStore(), extension).load()
        assert reloaded.token == TokenData(access_token="t", account_id="acct", expires_at=10.0)
        assert reloaded.profile.profile_id == "p"

    @pytest.mark.asyncio
    async def test_broken_scope_is_skipped(self):
        store = CredentialStore(BrokenStore(), MemoryStore({LOCALE_KEY: "it-IT"}))
        assert (await store.load()).locale == "it-IT"
        await store.save_locale("es-ES")
        assert (await store.load()).locale == "es-ES"

    @pytest.mark.asyncio
    async def test_clear(self):
        session = MemoryStore({TOKEN_KEY: {"access_token": "t"}, LOCALE_KEY: "en-US"})
        store = CredentialStore(session)
        await store.clear()
        loaded = await store.load()
        assert loaded.token is None
        assert loaded.locale is None
