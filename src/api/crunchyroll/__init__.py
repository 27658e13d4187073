"""
Crunchyroll Service Package - client-side access layer for the Crunchyroll web API.

This package provides:
- CrunchyrollAuth: token/profile state and single-flight credential bootstrap
- CrunchyrollService: authenticated, cached request builder
- CrunchyrollWrapper: public operations with fallbacks and fan-outs
- WatchlistManager: idempotent watchlist and rating mutations
- Models: Pydantic models for credentials, responses and results
"""

import time
from collections.abc import Callable

from api.crunchyroll.auth import CrunchyrollAuth
from api.crunchyroll.config import CrunchyrollSettings
from api.crunchyroll.core import CrunchyrollService
from api.crunchyroll.credentials import (
    CREDENTIALS_RESPONSE,
    REQUEST_CREDENTIALS,
    CredentialResponder,
    CredentialSource,
    InProcessMessageChannel,
    MessageChannel,
    MessageChannelCredentialSource,
)
from api.crunchyroll.models import (
    AuthError,
    BrowseOptions,
    CredentialsPayload,
    CredentialsTimeoutError,
    CrunchyrollError,
    HomeData,
    HttpError,
    ListResponse,
    MutationResult,
    PlayheadState,
    ProfileData,
    RecommendationResponse,
    SeriesWithSeasons,
    TokenData,
    WatchlistOptions,
)
from api.crunchyroll.storage import CredentialStore, JsonFileStore, MemoryStore
from api.crunchyroll.watchlist import WatchlistManager
from api.crunchyroll.wrappers import CrunchyrollWrapper


def create_client(
    settings: CrunchyrollSettings | None = None,
    channel: MessageChannel | None = None,
    credential_source: CredentialSource | None = None,
    clock: Callable[[], float] = time.time,
) -> CrunchyrollWrapper:
    """Wire one client instance: stores, credential source, auth, service, wrapper.

    Credentials come from credential_source when given, else from a
    MessageChannelCredentialSource over channel. With neither, the client can
    only use credentials already persisted in the extension store.
    """
    settings = settings or CrunchyrollSettings.from_env()

    if credential_source is None and channel is not None:
        credential_source = MessageChannelCredentialSource(
            channel, timeout=settings.credentials_timeout
        )

    store = CredentialStore(MemoryStore(), JsonFileStore(settings.storage_path))
    auth = CrunchyrollAuth(
        credential_source=credential_source,
        store=store,
        clock=clock,
        credentials_retries=settings.credentials_retries,
        default_locale=settings.default_locale,
    )
    return CrunchyrollWrapper(CrunchyrollService(auth, settings=settings))


__all__ = [
    # Auth
    "CrunchyrollAuth",
    # Config
    "CrunchyrollSettings",
    # Core
    "CrunchyrollService",
    # Credentials
    "REQUEST_CREDENTIALS",
    "CREDENTIALS_RESPONSE",
    "CredentialSource",
    "MessageChannel",
    "MessageChannelCredentialSource",
    "InProcessMessageChannel",
    "CredentialResponder",
    # Storage
    "CredentialStore",
    "JsonFileStore",
    "MemoryStore",
    # Models
    "TokenData",
    "ProfileData",
    "CredentialsPayload",
    "BrowseOptions",
    "WatchlistOptions",
    "ListResponse",
    "PlayheadState",
    "RecommendationResponse",
    "SeriesWithSeasons",
    "HomeData",
    "MutationResult",
    # Errors
    "CrunchyrollError",
    "AuthError",
    "HttpError",
    "CredentialsTimeoutError",
    # Wrappers
    "CrunchyrollWrapper",
    "WatchlistManager",
    "create_client",
]
