"""
Watchlist and rating mutations.

Adds and removes are idempotent: the service answers 409 to an add of a series
that is already listed and 404 to a remove of one that is not, and both count as
success. Every watchlist mutation drops the account's cached watchlist pages
before returning. Mutations never raise; they report a MutationResult.
"""

from typing import TYPE_CHECKING

from api.crunchyroll.core import RECOVERABLE_ERRORS
from api.crunchyroll.models import HttpError, MutationResult
from utils.get_logger import get_logger

if TYPE_CHECKING:
    from api.crunchyroll.wrappers import CrunchyrollWrapper

logger = get_logger(__name__)

MISSING_ACCOUNT = "Missing account id"


def watchlist_cache_prefixes(account: str) -> list[str]:
    """Cache-key fragments of every watchlist read for account."""
    return [
        f"/content/v2/discover/{account}/watchlist",
        f"/content/v2/{account}/watchlist",
    ]


class WatchlistManager:
    def __init__(self, wrapper: "CrunchyrollWrapper"):
        self.wrapper = wrapper
        self.service = wrapper.service

    def _invalidate(self, account: str) -> None:
        for prefix in watchlist_cache_prefixes(account):
            self.service.clear_cache_by_prefix(prefix)

    async def add_to_watchlist(self, series_id: str) -> MutationResult:
        account = await self.service.optional_account()
        if not account:
            return MutationResult(success=False, error=MISSING_ACCOUNT)

        try:
            await self.service.request(
                "POST",
                f"/content/v2/{account}/watchlist",
                body={"content_id": series_id},
                use_cache=False,
                invalidate_prefixes=watchlist_cache_prefixes(account),
            )
            return MutationResult(success=True)
        except HttpError as e:
            if e.status == 409:
                self._invalidate(account)
                logger.debug(f"{series_id} already in watchlist")
                return MutationResult(success=True, already_in_watchlist=True)
            logger.warning(f"Add to watchlist failed for {series_id}: {e}")
            return MutationResult(success=False, error=str(e))
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Add to watchlist failed for {series_id}: {e}")
            return MutationResult(success=False, error=str(e) or "Failed to add to watchlist")

    async def remove_from_watchlist(self, series_id: str) -> MutationResult:
        account = await self.service.optional_account()
        if not account:
            return MutationResult(success=False, error=MISSING_ACCOUNT)

        try:
            await self.service.request(
                "DELETE",
                f"/content/v2/{account}/watchlist/{series_id}",
                use_cache=False,
                invalidate_prefixes=watchlist_cache_prefixes(account),
            )
            return MutationResult(success=True)
        except HttpError as e:
            if e.status == 404:
                self._invalidate(account)
                logger.debug(f"{series_id} was not in watchlist")
                return MutationResult(success=True)
            logger.warning(f"Remove from watchlist failed for {series_id}: {e}")
            return MutationResult(success=False, error=str(e))
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Remove from watchlist failed for {series_id}: {e}")
            return MutationResult(
                success=False, error=str(e) or "Failed to remove from watchlist"
            )

    async def update_user_rating(
        self, content_id: str, rating: str, content_type: str = "series"
    ) -> MutationResult:
        """PUT the user's rating. Series detail stays cached; its aggregate rating lags anyway."""
        account = await self.service.optional_account()
        if not account:
            return MutationResult(success=False, error=MISSING_ACCOUNT)

        try:
            await self.service.request(
                "PUT",
                f"/content-reviews/v3/user/{account}/rating/{content_type}/{content_id}",
                body={"rating": rating},
                use_cache=False,
            )
            return MutationResult(success=True)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Rating update failed for {content_id}: {e}")
            return MutationResult(success=False, error=str(e) or "Failed to update rating")

    async def remove_user_rating(
        self, content_id: str, content_type: str = "series"
    ) -> MutationResult:
        account = await self.service.optional_account()
        if not account:
            return MutationResult(success=False, error=MISSING_ACCOUNT)

        try:
            await self.service.request(
                "DELETE",
                f"/content-reviews/v3/user/{account}/rating/{content_type}/{content_id}",
                use_cache=False,
            )
            return MutationResult(success=True)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Rating removal failed for {content_id}: {e}")
            return MutationResult(success=False, error=str(e) or "Failed to remove rating")
