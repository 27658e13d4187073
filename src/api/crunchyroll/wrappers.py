"""
Crunchyroll Wrappers - the operations the UI calls.

Most operations map to one endpoint and normalize its payload. The rest combine
endpoints: continue-watching and recommendations fall back across endpoints,
series and home views fan out concurrently and substitute defaults for any leg
that fails.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

from api.crunchyroll.core import RECOVERABLE_ERRORS, CrunchyrollService
from api.crunchyroll.models import (
    BrowseOptions,
    HomeData,
    HttpError,
    ListResponse,
    MutationResult,
    PlayheadState,
    RecommendationResponse,
    SeriesWithSeasons,
    WatchlistOptions,
)
from api.crunchyroll.watchlist import WatchlistManager
from utils.get_logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Browse and series metadata barely changes within a session
SEMI_STATIC_TTL = 30 * 60
CONTINUE_WATCHING_TTL = 5 * 60

# Page scanned for client-side watchlist membership checks
WATCHLIST_SCAN_SIZE = 100


def _first(payload: Any) -> Any:
    if isinstance(payload, dict):
        data = payload.get("data") or []
        return data[0] if data else None
    return None


def _items(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        return payload.get("data") or []
    return []


def watchlist_entry_ids(item: dict[str, Any]) -> list[Any]:
    """Candidate series ids of one watchlist entry, in match order.

    Different endpoints embed the series id under different keys:
    1. `id`
    2. `content_id`
    3. `panel.episode_metadata.series_id`
    4. `panel.id`
    """
    panel = item.get("panel") or {}
    episode_metadata = panel.get("episode_metadata") or {}
    return [
        item.get("id"),
        item.get("content_id"),
        episode_metadata.get("series_id"),
        panel.get("id"),
    ]


def find_recommendation_lane(lanes: list[Any]) -> list[Any] | None:
    """Best-effort lookup of the recommendations lane in a home feed.

    Lanes carry no documented contract, so match on resource id, title or panel
    type and read items from whichever key holds a list.
    """
    for lane in lanes:
        if not isinstance(lane, dict):
            continue
        title = lane.get("title")
        panel = lane.get("panel") or {}
        if (
            lane.get("resource_id") == "recommendations"
            or (isinstance(title, str) and "recommend" in title.lower())
            or panel.get("type") == "recommendations"
        ):
            for items in (lane.get("items"), lane.get("data"), panel.get("items")):
                if isinstance(items, list):
                    return items
            return None
    return None


class CrunchyrollWrapper:
    """Public operations over a CrunchyrollService."""

    def __init__(self, service: CrunchyrollService):
        self.service = service
        self.watchlist = WatchlistManager(self)

    @property
    def auth(self):
        return self.service.auth

    async def _settle(self, leg: str, awaitable: Awaitable[T], default: T) -> T:
        """Run one fan-out leg, logging and substituting default on failure."""
        try:
            return await awaitable
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"{leg} failed, using default: {e}")
            return default

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def browse(self, options: BrowseOptions | None = None, **kwargs: Any) -> ListResponse:
        """Browse the catalog; options may be passed as a BrowseOptions or as keywords."""
        if options is None:
            options = BrowseOptions.model_validate(kwargs)
        response = await self.service.request(
            "GET",
            "/content/v2/discover/browse",
            params=options.to_params(),
            use_cache=options.use_cache,
            cache_ttl=SEMI_STATIC_TTL,
        )
        return ListResponse.from_raw(response)

    async def search(
        self, query: str, limit: int = 20, start: int = 0, type: str = "series,movie_listing"
    ) -> ListResponse:
        response = await self.service.request(
            "GET",
            "/content/v2/discover/search",
            params={"q": query, "n": limit, "start": start, "type": type},
        )
        return ListResponse.from_raw(response)

    async def get_up_next(self, content_id: str) -> dict[str, Any] | None:
        response = await self.service.request("GET", f"/content/v2/discover/up_next/{content_id}")
        return _first(response)

    async def get_home_feed(self, limit: int = 30, start: int = 0) -> ListResponse:
        account = await self.service.require_account("home feed")
        response = await self.service.request(
            "GET",
            f"/content/v2/discover/{account}/home_feed",
            params={"n": limit, "start": start},
            use_cache=False,
        )
        return ListResponse.from_raw(response)

    async def fetch_endpoint(
        self, path: str, params: dict[str, Any] | None = None, use_cache: bool = False
    ) -> Any:
        """Raw GET against any path, for debugging undocumented endpoints."""
        return await self.service.request("GET", path, params=params, use_cache=use_cache)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_watch_history(self, page_size: int = 20, page: int = 1) -> list[Any]:
        account = await self.service.require_account("watch history")
        response = await self.service.request(
            "GET",
            f"/content/v2/{account}/watch-history",
            params={"page_size": page_size, "page": page},
            cache_ttl=CONTINUE_WATCHING_TTL,
        )
        return _items(response)

    async def get_legacy_history(self, limit: int = 20) -> list[Any]:
        account = await self.service.require_account("history")
        response = await self.service.request(
            "GET",
            f"/content/v2/discover/{account}/history",
            params={"n": limit},
            cache_ttl=CONTINUE_WATCHING_TTL,
        )
        return _items(response)

    async def get_continue_watching(self, limit: int = 20) -> list[Any]:
        """Watch history, or the legacy history endpoint when it fails or is empty."""
        try:
            history = await self.get_watch_history(limit, 1)
            if history:
                return history
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"watch-history endpoint failed, falling back: {e}")

        if not await self.service.optional_account():
            return []
        return await self.get_legacy_history(limit)

    async def get_playheads(self, content_ids: list[str] | str) -> dict[str, PlayheadState]:
        account = await self.service.optional_account()
        if not account:
            return {}
        ids = ",".join(content_ids) if isinstance(content_ids, list) else content_ids
        response = await self.service.request(
            "GET", f"/content/v2/{account}/playheads", params={"content_ids": ids}
        )
        return {
            item["content_id"]: PlayheadState.model_validate(item)
            for item in _items(response)
            if isinstance(item, dict) and item.get("content_id")
        }

    # ------------------------------------------------------------------
    # Watchlist reads
    # ------------------------------------------------------------------

    async def get_watchlist(
        self, limit: int = 20, start: int = 0, options: WatchlistOptions | None = None
    ) -> ListResponse:
        account = await self.service.require_account("watchlist")
        options = options or WatchlistOptions()
        params = {
            "n": limit,
            "start": start,
            "order": options.order,
            "type": options.type,
            "sort_by": options.sort_by,
            "is_favorite": options.is_favorite,
            "is_dubbed": options.is_dubbed,
            "is_subbed": options.is_subbed,
        }
        response = await self.service.request(
            "GET",
            f"/content/v2/discover/{account}/watchlist",
            params=params,
            use_cache=options.use_cache,
        )
        return ListResponse.from_raw(response)

    async def is_in_watchlist(self, series_id: str) -> bool:
        """Scan the most recently updated watchlist entries for series_id.

        The service cannot filter the watchlist by content id, so membership is
        decided client-side over one uncached page.
        """
        page = await self.get_watchlist(
            WATCHLIST_SCAN_SIZE,
            0,
            WatchlistOptions(sort_by="date_updated", order="desc", use_cache=False),
        )
        return any(
            series_id in watchlist_entry_ids(item) for item in page.data if isinstance(item, dict)
        )

    # ------------------------------------------------------------------
    # Series / seasons / episodes
    # ------------------------------------------------------------------

    async def get_series(self, series_id: str) -> dict[str, Any] | None:
        response = await self.service.request(
            "GET", f"/content/v2/cms/series/{series_id}/", cache_ttl=SEMI_STATIC_TTL
        )
        return _first(response)

    async def get_seasons(self, series_id: str) -> list[Any]:
        response = await self.service.request(
            "GET", f"/content/v2/cms/series/{series_id}/seasons", cache_ttl=SEMI_STATIC_TTL
        )
        return _items(response)

    async def get_season(self, season_id: str) -> dict[str, Any] | None:
        response = await self.service.request(
            "GET", f"/content/v2/cms/seasons/{season_id}/", cache_ttl=SEMI_STATIC_TTL
        )
        return _first(response)

    async def get_season_episodes(self, season_id: str) -> list[Any]:
        response = await self.service.request(
            "GET", f"/content/v2/cms/seasons/{season_id}/episodes", cache_ttl=SEMI_STATIC_TTL
        )
        return _items(response)

    get_episodes = get_season_episodes

    async def get_episode(self, episode_id: str) -> dict[str, Any] | None:
        response = await self.service.request("GET", f"/content/v2/cms/episodes/{episode_id}")
        return _first(response)

    async def get_objects(
        self, content_ids: list[str] | str, fields: list[str] | None = None
    ) -> list[Any]:
        account = await self.service.require_account("objects")
        ids = ",".join(content_ids) if isinstance(content_ids, list) else content_ids
        params = {"fields": ",".join(fields)} if fields else None
        response = await self.service.request(
            "GET", f"/content/v2/cms/{account}/objects/{ids}", params=params
        )
        return _items(response)

    async def get_series_with_seasons(self, series_id: str) -> SeriesWithSeasons:
        """Series detail, seasons and watchlist membership fetched concurrently."""
        await self.auth.ensure_ready()

        series, seasons, in_watchlist = await asyncio.gather(
            self._settle("series detail", self.get_series(series_id), None),
            self._settle("seasons", self.get_seasons(series_id), []),
            self._settle("watchlist membership", self.is_in_watchlist(series_id), False),
        )
        return SeriesWithSeasons(series=series, seasons=seasons, is_in_watchlist=in_watchlist)

    async def get_all_series_episodes(self, series_id: str) -> list[Any]:
        """Every episode of a series, season by season; failed seasons are skipped."""
        seasons = await self.get_seasons(series_id)
        season_ids = [s["id"] for s in seasons if isinstance(s, dict) and s.get("id")]
        per_season = await asyncio.gather(
            *(
                self._settle(f"episodes of season {season_id}", self.get_season_episodes(season_id), [])
                for season_id in season_ids
            )
        )
        return [episode for episodes in per_season for episode in episodes]

    # ------------------------------------------------------------------
    # Recommendations and home
    # ------------------------------------------------------------------

    async def get_recommendations(self, seed_content_id: str | None = None) -> RecommendationResponse:
        """Recommendations from the first tier that yields items.

        1. dedicated endpoint, when a seed content id is given
        2. the recommendations lane of the home feed
        3. a popularity-sorted browse
        """
        if seed_content_id:
            try:
                response = await self.service.request(
                    "GET", f"/recommendations/v1/next/android/{seed_content_id}", use_cache=False
                )
                if isinstance(response, dict):
                    for key in ("recommendations", "data", "items"):
                        if response.get(key):
                            return RecommendationResponse(recommendations=response[key])
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"Seed recommendations failed for {seed_content_id}: {e}")

        if await self.service.optional_account():
            try:
                feed = await self.get_home_feed(50, 0)
                items = find_recommendation_lane(feed.data)
                if items:
                    return RecommendationResponse(recommendations=items)
            except RECOVERABLE_ERRORS as e:
                logger.warning(f"Home feed recommendations failed: {e}")

        try:
            fallback = await self.browse(
                BrowseOptions(type="series", limit=30, sort_by="popularity", include_ratings=True)
            )
            return RecommendationResponse(recommendations=fallback.data)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Popularity browse fallback failed: {e}")
            return RecommendationResponse()

    async def get_home_data(
        self,
        continue_watching_limit: int = 10,
        browse_limit: int = 30,
        seasonal_tag: str | None = None,
    ) -> HomeData:
        """Everything the home page shows, fetched concurrently."""
        await self.auth.ensure_ready()

        async def _seasonal() -> ListResponse:
            if not seasonal_tag:
                return ListResponse()
            return await self.browse(
                BrowseOptions(type="series", seasonal_tag=seasonal_tag, limit=20)
            )

        continue_watching, recommendations, browse_data, seasonal_data = await asyncio.gather(
            self._settle(
                "continue watching", self.get_continue_watching(continue_watching_limit), []
            ),
            self._settle("recommendations", self.get_recommendations(), RecommendationResponse()),
            self._settle(
                "browse",
                self.browse(BrowseOptions(type="series", limit=browse_limit)),
                ListResponse(),
            ),
            self._settle("seasonal browse", _seasonal(), ListResponse()),
        )
        return HomeData(
            continue_watching=continue_watching,
            recommendations=recommendations,
            browse_data=browse_data,
            seasonal_data=seasonal_data,
        )

    # ------------------------------------------------------------------
    # Ratings and playback
    # ------------------------------------------------------------------

    async def get_user_rating(
        self, content_id: str, content_type: str = "series"
    ) -> dict[str, Any] | None:
        """The user's rating, or None when there is none (404) or no account."""
        account = await self.service.optional_account()
        if not account:
            return None
        try:
            return await self.service.request(
                "GET",
                f"/content-reviews/v3/user/{account}/rating/{content_type}/{content_id}",
                use_cache=False,
            )
        except HttpError as e:
            if e.status != 404:
                logger.warning(f"Rating lookup failed for {content_id}: {e}")
            return None
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Rating lookup failed for {content_id}: {e}")
            return None

    async def get_play_stream(self, content_id: str) -> Any:
        return await self.service.request(
            "GET",
            f"/v1/{content_id}/web/chrome/play",
            base_url=self.service.play_base_url,
            include_locale=False,
            use_cache=False,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "x-cr-stream-limits": "false",
            },
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_to_watchlist(self, series_id: str) -> MutationResult:
        return await self.watchlist.add_to_watchlist(series_id)

    async def remove_from_watchlist(self, series_id: str) -> MutationResult:
        return await self.watchlist.remove_from_watchlist(series_id)

    async def update_user_rating(
        self, content_id: str, rating: str, content_type: str = "series"
    ) -> MutationResult:
        return await self.watchlist.update_user_rating(content_id, rating, content_type)

    async def remove_user_rating(self, content_id: str, content_type: str = "series") -> MutationResult:
        return await self.watchlist.remove_user_rating(content_id, content_type)

    # ------------------------------------------------------------------
    # Client state
    # ------------------------------------------------------------------

    async def initialize(self, force: bool = False) -> bool:
        return await self.auth.initialize(force)

    def is_initialized(self) -> bool:
        return self.service.is_initialized()

    async def set_locale(self, locale: str) -> None:
        await self.service.set_locale(locale)

    def clear_cache(self) -> None:
        self.service.clear_cache()

    def clear_cache_by_prefix(self, prefix: str) -> int:
        return self.service.clear_cache_by_prefix(prefix)
