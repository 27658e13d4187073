"""
Crunchyroll Auth - owns the in-memory token and profile, decides expiry and
drives the credential bootstrap.

Concurrent callers of initialize() while a bootstrap is running share that one
bootstrap; the in-flight slot is cleared when it settles so a later call can retry.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from api.crunchyroll.credentials import CredentialSource
from api.crunchyroll.models import (
    DEFAULT_LOCALE,
    AuthError,
    CrunchyrollError,
    ProfileData,
    TokenData,
)
from api.crunchyroll.storage import CredentialStore, MemoryStore
from utils.get_logger import get_logger

logger = get_logger(__name__)

ProfileFetcher = Callable[[str], Awaitable[dict[str, Any]]]


class CrunchyrollAuth:
    """Auth state for one client instance."""

    def __init__(
        self,
        credential_source: CredentialSource | None = None,
        store: CredentialStore | None = None,
        profile_fetcher: ProfileFetcher | None = None,
        clock: Callable[[], float] = time.time,
        credentials_retries: int = 2,
        default_locale: str = DEFAULT_LOCALE,
    ):
        self.credential_source = credential_source
        self.store = store or CredentialStore(MemoryStore())
        self.profile_fetcher = profile_fetcher
        self.clock = clock
        self.credentials_retries = credentials_retries

        self.token: TokenData | None = None
        self.profile: ProfileData | None = None
        self.locale = default_locale
        self.preferred_audio_language = default_locale

        self._rejected_token: str | None = None
        self._bootstrap_task: asyncio.Task | None = None
        self.bootstrap_count = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self.token.access_token if self.token else None

    @property
    def profile_id(self) -> str | None:
        return self.profile.profile_id if self.profile else None

    @property
    def account_id(self) -> str | None:
        """Account id used in account-scoped paths, falling back to the profile id."""
        if self.token and self.token.account_id:
            return self.token.account_id
        if self.profile and self.profile.account_id:
            return self.profile.account_id
        return self.profile_id

    def is_token_expired(self) -> bool:
        if self.token is None:
            return True
        return self.token.is_expired(self.clock())

    def is_ready(self) -> bool:
        return self.token is not None and not self.is_token_expired() and bool(self.profile_id)

    def invalidate_token(self) -> None:
        """Drop the token after a 401/403 so the next operation re-bootstraps."""
        if self.token is not None:
            logger.warning("Access token rejected by the service, invalidating")
            self._rejected_token = self.token.access_token
        self.token = None

    # ------------------------------------------------------------------
    # Applying credentials
    # ------------------------------------------------------------------

    async def apply_token(self, token: TokenData) -> None:
        self.token = token
        if token.country:
            self.locale = token.locale
            self.preferred_audio_language = token.preferred_audio_language
            await self.store.save_locale(self.locale)
        await self.store.save_token(token)

    async def apply_profile(self, profile: ProfileData) -> None:
        self.profile = profile
        await self.store.save_profile(profile)

    async def set_locale(self, locale: str) -> None:
        self.locale = locale
        self.preferred_audio_language = locale
        await self.store.save_locale(locale)

    async def _load_persisted(self) -> None:
        stored = await self.store.load()
        # Skip a persisted copy of a token the service already rejected
        if stored.token is not None and stored.token.access_token != self._rejected_token:
            self.token = stored.token
        if stored.profile is not None:
            self.profile = stored.profile
        if stored.locale:
            self.locale = stored.locale
            self.preferred_audio_language = stored.locale

    async def _request_from_source(self) -> None:
        if self.credential_source is None:
            logger.warning("No credential source configured, cannot bootstrap")
            return
        payload = await self.credential_source.request_credentials(
            retries=self.credentials_retries
        )
        if payload is None:
            logger.warning("Credentials not available from the host page yet")
            return

        if payload.token_data:
            token = TokenData.from_payload(payload.token_data, now=self.clock())
            if token is not None:
                await self.apply_token(token)
        if payload.profile_data:
            profile = ProfileData.from_payload(payload.profile_data)
            if profile is not None:
                await self.apply_profile(profile)

    async def _fetch_profile(self) -> None:
        if self.profile_fetcher is None or self.access_token is None:
            return
        try:
            raw = await self.profile_fetcher(self.access_token)
        except (CrunchyrollError, aiohttp.ClientError, TimeoutError) as e:
            logger.warning(f"Profile fetch failed: {e}")
            return
        profile = ProfileData.from_payload(raw or {})
        if profile is None:
            logger.warning("Profile response did not contain any profile")
            return
        await self.apply_profile(profile)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def _bootstrap(self) -> bool:
        self.bootstrap_count += 1
        await self._load_persisted()

        if self.token is None or self.is_token_expired():
            await self._request_from_source()

        if not self.profile_id and self.token is not None:
            await self._fetch_profile()

        ready = self.is_ready()
        if ready:
            logger.info("Crunchyroll credentials ready")
        else:
            logger.warning(
                f"Crunchyroll credentials incomplete (token={self.token is not None}, "
                f"expired={self.is_token_expired()}, profile={bool(self.profile_id)})"
            )
        return ready

    def _release_bootstrap(self, task: asyncio.Task) -> None:
        if self._bootstrap_task is task:
            self._bootstrap_task = None

    async def initialize(self, force: bool = False) -> bool:
        """Make credentials available, bootstrapping at most once at a time.

        Returns:
            True when a live token and a profile id are available
        """
        if not force and self.is_ready():
            return True

        task = self._bootstrap_task
        if task is None:
            task = asyncio.ensure_future(self._bootstrap())
            self._bootstrap_task = task
            task.add_done_callback(self._release_bootstrap)

        # Shielded: one waiter giving up must not cancel the shared bootstrap
        return await asyncio.shield(task)

    async def ensure_ready(self, force: bool = False) -> None:
        """Raise AuthError unless a live token and a profile id are available."""
        if not await self.initialize(force):
            raise AuthError("Crunchyroll credentials are missing")
