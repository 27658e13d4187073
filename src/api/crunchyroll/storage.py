"""
Credential storage - persists token, profile and locale under distinct keys in a
session-scoped store and an extension-scoped store. Reads prefer the session scope.
"""

import json
import os
from dataclasses import dataclass
from typing import Any, Protocol

import aiofiles
from filelock import AsyncFileLock

from api.crunchyroll.models import ProfileData, TokenData
from utils.get_logger import get_logger

logger = get_logger(__name__)

TOKEN_KEY = "crunchyroll_token"
PROFILE_KEY = "crunchyroll_profile"
LOCALE_KEY = "crunchyroll_locale"


class KeyValueStore(Protocol):
    """Durable key-value store holding JSON-serializable values."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-lifetime store, the session scope."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """JSON file store guarded by a file lock, the extension scope."""

    def __init__(self, path: str, lock_timeout: float = 3):
        self.path = os.path.expanduser(path)
        self.lock_timeout = lock_timeout

    def _lock(self) -> AsyncFileLock:
        return AsyncFileLock(f"{self.path}.lock", timeout=self.lock_timeout)

    async def _read_all(self) -> dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        async with aiofiles.open(self.path) as file:
            raw = await file.read()
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring corrupt credential file {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    async def _write_all(self, data: dict[str, Any]) -> None:
        tmp_path = f"{self.path}.tmp"
        async with aiofiles.open(tmp_path, "w") as file:
            await file.write(json.dumps(data))
        os.replace(tmp_path, self.path)

    async def get(self, key: str) -> Any:
        async with self._lock():
            data = await self._read_all()
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        async with self._lock():
            data = await self._read_all()
            data[key] = value
            await self._write_all(data)

    async def delete(self, key: str) -> None:
        if not os.path.exists(self.path):
            return
        async with self._lock():
            data = await self._read_all()
            if data.pop(key, None) is not None:
                await self._write_all(data)


@dataclass
class StoredCredentials:
    token: TokenData | None = None
    profile: ProfileData | None = None
    locale: str | None = None


class CredentialStore:
    """Pure data access for persisted credentials; no expiry or bootstrap logic."""

    def __init__(self, session_store: KeyValueStore, extension_store: KeyValueStore | None = None):
        self.session_store = session_store
        self.extension_store = extension_store

    @property
    def _stores(self) -> list[KeyValueStore]:
        stores = [self.session_store]
        if self.extension_store is not None:
            stores.append(self.extension_store)
        return stores

    async def _read(self, key: str) -> Any:
        for store in self._stores:
            try:
                value = await store.get(key)
            except (OSError, TimeoutError) as e:
                logger.warning(f"Unable to read {key} from {type(store).__name__}: {e}")
                continue
            if value is not None:
                return value
        return None

    async def _write(self, key: str, value: Any) -> None:
        for store in self._stores:
            try:
                await store.set(key, value)
            except (OSError, TimeoutError) as e:
                logger.warning(f"Unable to persist {key} in {type(store).__name__}: {e}")

    async def load(self) -> StoredCredentials:
        token_raw = await self._read(TOKEN_KEY)
        profile_raw = await self._read(PROFILE_KEY)
        locale = await self._read(LOCALE_KEY)
        return StoredCredentials(
            token=TokenData.from_payload(token_raw) if isinstance(token_raw, dict) else None,
            profile=ProfileData.from_payload(profile_raw) if isinstance(profile_raw, dict) else None,
            locale=locale if isinstance(locale, str) else None,
        )

    async def save_token(self, token: TokenData) -> None:
        await self._write(TOKEN_KEY, token.to_dict())

    async def save_profile(self, profile: ProfileData) -> None:
        await self._write(PROFILE_KEY, profile.to_dict())

    async def save_locale(self, locale: str) -> None:
        await self._write(LOCALE_KEY, locale)

    async def clear(self) -> None:
        for store in self._stores:
            for key in (TOKEN_KEY, PROFILE_KEY, LOCALE_KEY):
                await store.delete(key)
