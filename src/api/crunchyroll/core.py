"""
Crunchyroll Core Service - authenticated request builder for the private web API.

Builds URLs with the default locale parameters, attaches the bearer token, serves
repeated GETs from the request cache and turns every non-2xx response into an
HttpError. A 401/403 invalidates the token so the next call re-bootstraps.
"""

import json
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp

from api.crunchyroll.auth import CrunchyrollAuth
from api.crunchyroll.config import CrunchyrollSettings
from api.crunchyroll.models import AuthError, CrunchyrollError, HttpError
from utils.base_api_client import BaseAPIClient
from utils.get_logger import get_logger
from utils.request_cache import RequestCache

logger = get_logger(__name__)

PROFILE_PATH = "/accounts/v1/me/multiprofile"

# Errors a fallback tier, fan-out leg or mutation result absorbs
RECOVERABLE_ERRORS = (CrunchyrollError, aiohttp.ClientError, TimeoutError)

_BODY_METHODS = ("POST", "PUT", "PATCH")


def _encode_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _error_message(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, dict):
        for key in ("message", "error", "code"):
            if payload.get(key):
                return str(payload[key])
        return json.dumps(payload)
    return str(payload)


class CrunchyrollService(BaseAPIClient):
    """
    Request builder shared by every Crunchyroll operation.
    Owns the response cache; auth state lives in CrunchyrollAuth.
    """

    def __init__(
        self,
        auth: CrunchyrollAuth,
        cache: RequestCache | None = None,
        settings: CrunchyrollSettings | None = None,
    ):
        super().__init__()
        self.settings = settings or CrunchyrollSettings()
        self.auth = auth
        self.cache = cache or RequestCache(
            defaultTTL=self.settings.default_cache_ttl, prefix="crunchyroll", clock=auth.clock
        )
        self.base_url = self.settings.api_base.rstrip("/")
        self.play_base_url = self.settings.play_api_base.rstrip("/")
        self._rate_limit_max = self.settings.rate_limit_max
        self._rate_limit_period = self.settings.rate_limit_period

        if self.auth.profile_fetcher is None:
            self.auth.profile_fetcher = self.fetch_profile

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def build_url(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        include_locale: bool = True,
        base_url: str | None = None,
    ) -> str:
        """Absolute URL for path with params appended; None values are dropped.

        Unless include_locale is False, `locale` and `preferred_audio_language`
        are added when the caller did not set them.
        """
        url = path if path.startswith("http") else f"{base_url or self.base_url}{path}"
        parts = urlsplit(url)

        query = parse_qsl(parts.query, keep_blank_values=True)
        query.extend(
            (key, _encode_param(value)) for key, value in (params or {}).items() if value is not None
        )

        if include_locale:
            present = {key for key, _ in query}
            if "locale" not in present:
                query.append(("locale", self.auth.locale))
            if "preferred_audio_language" not in present:
                query.append(("preferred_audio_language", self.auth.preferred_audio_language))

        return urlunsplit(parts._replace(query=urlencode(query)))

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
        use_cache: bool = True,
        cache_ttl: float | None = None,
        include_locale: bool = True,
        skip_auth: bool = False,
        headers: dict[str, str] | None = None,
        base_url: str | None = None,
        invalidate_prefixes: list[str] | None = None,
    ) -> Any:
        """Perform an API call.

        Only GETs are cached. A successful mutation drops every cache entry whose
        key contains one of invalidate_prefixes.

        Raises:
            AuthError: credentials could not be obtained
            HttpError: the service answered with a non-2xx status
        """
        method = method.upper()
        if not skip_auth:
            await self.auth.ensure_ready()

        url = self.build_url(path, params, include_locale=include_locale, base_url=base_url)

        cacheable = method == "GET" and use_cache
        cache_key = RequestCache.make_key(method, url)
        generation = self.cache.generation
        if cacheable:
            entry = self.cache.lookup(cache_key)
            if entry is not None:
                logger.debug(f"Serving {method} {path} from cache")
                return entry.data

        request_headers = {"Accept": "application/json, text/plain, */*", **(headers or {})}
        if not skip_auth and self.auth.access_token:
            request_headers["Authorization"] = f"Bearer {self.auth.access_token}"

        json_body = None
        data = None
        if method in _BODY_METHODS and body is not None:
            if isinstance(body, str):
                data = body
            else:
                json_body = body
            request_headers.setdefault("Content-Type", "application/json")

        payload, status = await self._core_async_request(
            method,
            url,
            json_body=json_body,
            data=data,
            headers=request_headers,
            timeout=self.settings.request_timeout,
            max_retries=self.settings.max_retries,
        )

        if not 200 <= status < 300:
            if status in (401, 403) and not skip_auth:
                self.auth.invalidate_token()
            raise HttpError(status, _error_message(payload), url)

        if cacheable:
            if self.cache.generation == generation:
                self.cache.set(cache_key, payload, cache_ttl)
            else:
                logger.debug(f"Not caching {path}: cache invalidated while in flight")
        elif method != "GET":
            for prefix in invalidate_prefixes or []:
                self.clear_cache_by_prefix(prefix)

        return payload

    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        """Fetch the account's profiles with an explicit token (used during bootstrap)."""
        payload = await self.request(
            "GET",
            PROFILE_PATH,
            use_cache=False,
            include_locale=False,
            skip_auth=True,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        return payload if isinstance(payload, dict) else {}

    async def optional_account(self) -> str | None:
        """Account id for account-scoped paths, bootstrapping first; None when unavailable."""
        await self.auth.initialize()
        return self.auth.account_id

    async def require_account(self, purpose: str) -> str:
        account = await self.optional_account()
        if not account:
            raise AuthError(f"Missing account id for {purpose}")
        return account

    # ------------------------------------------------------------------
    # Cache and locale
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        self.forget_pending_requests()

    def clear_cache_by_prefix(self, prefix: str) -> int:
        self.forget_pending_requests(prefix)
        return self.cache.invalidate_by_prefix(prefix)

    async def set_locale(self, locale: str) -> None:
        """Switch locale and audio language; cached responses were localized, so drop them."""
        await self.auth.set_locale(locale)
        self.clear_cache()
        logger.info(f"Locale set to {locale}")

    def is_initialized(self) -> bool:
        return bool(self.auth.access_token) and bool(self.auth.profile_id)
