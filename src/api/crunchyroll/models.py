"""
Crunchyroll Models - Pydantic models for credentials, normalized API responses
and the result objects handed to the UI layer.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import ConfigDict, Field

from utils.pydantic_tools import BaseModelWithMethods

# Expiry safety window: a token this close to expiring is treated as expired
TOKEN_EXPIRY_MARGIN = 60

DEFAULT_LOCALE = "en-US"

COUNTRY_LOCALES: dict[str, str] = {
    "CA": "fr-FR",
    "US": "en-US",
    "FR": "fr-FR",
    "GB": "en-GB",
    "DE": "de-DE",
    "ES": "es-ES",
    "IT": "it-IT",
    "BR": "pt-BR",
}


def country_to_locale(country: str | None) -> str:
    if not country:
        return DEFAULT_LOCALE
    return COUNTRY_LOCALES.get(country.upper(), DEFAULT_LOCALE)


def _epoch_seconds(value: Any) -> float:
    """Epoch timestamp in seconds; browser payloads may stamp milliseconds.

    Raises:
        TypeError, ValueError: value is not numeric
    """
    seconds = float(value)
    if seconds > 1e12:
        seconds /= 1000
    return seconds


# =============================================================================
# Errors
# =============================================================================


class CrunchyrollError(Exception):
    """Base class for every error raised by the Crunchyroll access layer."""


class AuthError(CrunchyrollError):
    """No valid token or profile id could be obtained."""


class HttpError(CrunchyrollError):
    """Non-2xx response from the service."""

    def __init__(self, status: int, message: str = "", url: str = ""):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")


class CredentialsTimeoutError(CrunchyrollError, TimeoutError):
    """The host-page scraper did not answer a credentials request in time."""


# =============================================================================
# Credentials
# =============================================================================


class TokenData(BaseModelWithMethods):
    """Access token captured from the host page."""

    access_token: str
    account_id: str | None = None
    expires_at: float = 0.0  # epoch seconds
    country: str | None = None

    @property
    def locale(self) -> str:
        return country_to_locale(self.country)

    @property
    def preferred_audio_language(self) -> str:
        return self.locale

    def is_expired(self, now: float | None = None) -> bool:
        if not self.expires_at:
            return True
        if now is None:
            now = time.time()
        return now >= self.expires_at - TOKEN_EXPIRY_MARGIN

    @classmethod
    def from_payload(cls, payload: Any, now: float | None = None) -> TokenData | None:
        """Normalize a raw token payload from the scraper or from storage.

        Accepts `access_token`/`token`, `account_id`/`account_uuid`, and an expiry as
        absolute `expires_at`, relative `expires_in` (from `timestamp` or now) or
        JWT-style `exp`. Timestamps may be in seconds or milliseconds.

        Returns:
            None when the payload has no token or a non-numeric expiry
        """
        if not isinstance(payload, dict) or not payload:
            return None
        access_token = payload.get("access_token") or payload.get("token")
        if not access_token or not isinstance(access_token, str):
            return None
        if now is None:
            now = time.time()

        try:
            expires_at = 0.0
            if payload.get("expires_at"):
                expires_at = _epoch_seconds(payload["expires_at"])
            elif payload.get("expires_in"):
                issued_at = _epoch_seconds(payload.get("timestamp") or now)
                expires_at = issued_at + float(payload["expires_in"])
            elif payload.get("exp"):
                expires_at = _epoch_seconds(payload["exp"])
        except (TypeError, ValueError):
            return None

        account_id = payload.get("account_id") or payload.get("account_uuid")
        country = payload.get("country")
        return cls(
            access_token=access_token,
            account_id=str(account_id) if account_id else None,
            expires_at=expires_at,
            country=country if isinstance(country, str) else None,
        )


class ProfileData(BaseModelWithMethods):
    """The profile the client acts as."""

    profile_id: str
    account_id: str | None = None
    is_selected: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> ProfileData | None:
        """Pick the selected profile (or the first one) from a multiprofile payload.

        Also accepts a previously persisted ProfileData dump. Entries that are
        not objects are skipped.
        """
        if not isinstance(payload, dict) or not payload:
            return None
        if payload.get("profile_id") and "profiles" not in payload:
            account_id = payload.get("account_id")
            return cls(
                profile_id=str(payload["profile_id"]),
                account_id=str(account_id) if account_id else None,
                is_selected=bool(payload.get("is_selected")),
            )

        profiles = payload.get("profiles")
        if not isinstance(profiles, list):
            return None
        profiles = [p for p in profiles if isinstance(p, dict)]
        if not profiles:
            return None
        selected = next((p for p in profiles if p.get("is_selected")), profiles[0])
        profile_id = selected.get("profile_id") or selected.get("id")
        if not profile_id:
            return None
        account_id = payload.get("account_id") or selected.get("account_id")
        return cls(
            profile_id=str(profile_id),
            account_id=str(account_id) if account_id else None,
            is_selected=bool(selected.get("is_selected")),
        )


class CredentialsPayload(BaseModelWithMethods):
    """Raw `{tokenData, profileData}` answer from the host-page scraper."""

    token_data: dict[str, Any] | None = Field(default=None, alias="tokenData")
    profile_data: dict[str, Any] | None = Field(default=None, alias="profileData")


# =============================================================================
# Requests
# =============================================================================


class BrowseOptions(BaseModelWithMethods):
    # A mistyped filter keyword must fail rather than be dropped
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    limit: int = 20
    start: int | None = None
    categories: list[str] | None = None
    type: str = "series"
    q: str | None = None
    seasonal_tag: str | None = Field(default=None, alias="seasonalTag")
    is_dubbed: bool | None = Field(default=None, alias="isDubbed")
    is_subbed: bool | None = Field(default=None, alias="isSubbed")
    sort_by: str | None = Field(default=None, alias="sortBy")
    order: str | None = None
    include_ratings: bool = Field(default=True, alias="includeRatings")
    use_cache: bool = Field(default=True, alias="useCache")

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "n": self.limit or 20,
            "start": self.start,
            "categories": ",".join(self.categories) if self.categories else None,
            "type": self.type or "series",
            "q": self.q,
            "seasonal_tag": self.seasonal_tag,
            "is_dubbed": self.is_dubbed,
            "is_subbed": self.is_subbed,
            "sort_by": self.sort_by,
            "order": self.order,
        }
        if self.include_ratings:
            params["ratings"] = "true"
        return params


class WatchlistOptions(BaseModelWithMethods):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    order: str | None = None
    type: str | None = None
    sort_by: str | None = Field(default=None, alias="sortBy")
    is_favorite: bool | None = None
    is_dubbed: bool | None = None
    is_subbed: bool | None = None
    use_cache: bool = Field(default=True, alias="useCache")


# =============================================================================
# Responses
# =============================================================================


class ListResponse(BaseModelWithMethods):
    """Canonical shape for every paginated, browse, search and watchlist endpoint."""

    data: list[Any] = Field(default_factory=list)
    total: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Any) -> ListResponse:
        if not isinstance(raw, dict):
            return cls()
        return cls(
            data=raw.get("data") or [],
            total=raw.get("total") or 0,
            meta=raw.get("meta") or {},
        )


class PlayheadState(BaseModelWithMethods):
    playhead: int | float | None = None
    fully_watched: bool | None = None
    last_modified: str | None = None


class RecommendationResponse(BaseModelWithMethods):
    recommendations: list[Any] = Field(default_factory=list)


class SeriesWithSeasons(BaseModelWithMethods):
    series: dict[str, Any] | None = None
    seasons: list[Any] = Field(default_factory=list)
    is_in_watchlist: bool = False


class HomeData(BaseModelWithMethods):
    continue_watching: list[Any] = Field(default_factory=list)
    recommendations: RecommendationResponse = Field(default_factory=RecommendationResponse)
    browse_data: ListResponse = Field(default_factory=ListResponse)
    seasonal_data: ListResponse = Field(default_factory=ListResponse)


class MutationResult(BaseModelWithMethods):
    """`{success, error?}` result returned by every mutating operation."""

    success: bool
    error: str | None = None
    already_in_watchlist: bool = False
