"""
Unit tests for watchlist and rating mutations.
"""

import asyncio

import aiohttp
import pytest

from api.crunchyroll.models import CredentialsPayload, MutationResult
from api.crunchyroll.watchlist import watchlist_cache_prefixes

pytestmark = pytest.mark.unit

WATCHLIST_READ = "/content/v2/discover/acct-1/watchlist"
WATCHLIST_WRITE = "/content/v2/acct-1/watchlist"
RATING = "/content-reviews/v3/user/acct-1/rating/series/s1"


class TestAddToWatchlist:
    @pytest.mark.asyncio
    async def test_add_twice_is_idempotent(self, wrapper, transport):
        transport.add("POST", WATCHLIST_WRITE, ({}, 200), ({"message": "conflict"}, 409))

        first = await wrapper.add_to_watchlist("s1")
        second = await wrapper.add_to_watchlist("s1")

        assert first == MutationResult(success=True)
        assert second == MutationResult(success=True, already_in_watchlist=True)
        assert transport.calls[-1]["json_body"] == {"content_id": "s1"}

    @pytest.mark.asyncio
    async def test_add_invalidates_watchlist_reads(self, wrapper, transport):
        transport.json("GET", WATCHLIST_READ, {"data": []})
        transport.json("POST", WATCHLIST_WRITE, {}, status=409)

        await wrapper.get_watchlist()
        await wrapper.add_to_watchlist("s1")
        await wrapper.get_watchlist()

        assert transport.count("GET", WATCHLIST_READ) == 2

    @pytest.mark.asyncio
    async def test_add_failure_is_reported(self, wrapper, transport):
        transport.json("POST", WATCHLIST_WRITE, {"message": "boom"}, status=500)

        result = await wrapper.add_to_watchlist("s1")

        assert not result.success
        assert result.error == "HTTP 500: boom"

    @pytest.mark.asyncio
    async def test_transport_failure_is_reported(self, wrapper, transport):
        transport.add("POST", WATCHLIST_WRITE, aiohttp.ClientConnectionError("reset"))

        result = await wrapper.add_to_watchlist("s1")

        assert not result.success
        assert result.error == "reset"


class TestRemoveFromWatchlist:
    @pytest.mark.asyncio
    async def test_remove_invalidates_cached_watchlist(self, wrapper, transport):
        transport.add(
            "GET",
            WATCHLIST_READ,
            ({"data": [{"id": "s1"}], "total": 1}, 200),
            ({"data": [], "total": 0}, 200),
        )
        transport.json("DELETE", f"{WATCHLIST_WRITE}/s1", None, status=204)

        before = await wrapper.get_watchlist()
        result = await wrapper.remove_from_watchlist("s1")
        after = await wrapper.get_watchlist()

        assert before.total == 1
        assert result == MutationResult(success=True)
        assert after.total == 0
        assert transport.count("GET", WATCHLIST_READ) == 2

    @pytest.mark.asyncio
    async def test_remove_missing_entry_is_success(self, wrapper, transport):
        transport.json("DELETE", f"{WATCHLIST_WRITE}/s1", {"message": "not found"}, status=404)
        assert (await wrapper.remove_from_watchlist("s1")).success

    @pytest.mark.asyncio
    async def test_missing_account(self, wrapper):
        wrapper.auth.credential_source.payload = None

        result = await wrapper.remove_from_watchlist("s1")

        assert result == MutationResult(success=False, error="Missing account id")

    @pytest.mark.asyncio
    async def test_malformed_credentials_are_reported_not_raised(self, wrapper):
        wrapper.auth.credential_source.payload = CredentialsPayload(
            tokenData={"access_token": "t", "expires_in": "soon"},
            profileData={"profiles": ["p1"]},
        )

        result = await wrapper.remove_from_watchlist("s1")

        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_read_in_flight_during_remove_is_not_cached(self, wrapper, transport, monkeypatch):
        transport.add(
            "GET",
            WATCHLIST_READ,
            ({"data": [{"id": "s1"}], "total": 1}, 200),
            ({"data": [], "total": 0}, 200),
        )
        transport.json("DELETE", f"{WATCHLIST_WRITE}/s1", None, status=204)
        await wrapper.auth.ensure_ready()

        started = asyncio.Event()
        release = asyncio.Event()

        async def held_transport(method, url, **kwargs):
            if method == "GET":
                started.set()
                await release.wait()
            return await transport(method, url, **kwargs)

        monkeypatch.setattr(wrapper.service, "_core_async_request", held_transport)

        in_flight = asyncio.ensure_future(wrapper.get_watchlist())
        await started.wait()
        result = await wrapper.remove_from_watchlist("s1")
        release.set()
        stale = await in_flight

        after = await wrapper.get_watchlist()

        assert result == MutationResult(success=True)
        assert stale.total == 1
        assert after.total == 0
        assert after.data == []
        assert transport.count("GET", WATCHLIST_READ) == 2


class TestRatings:
    @pytest.mark.asyncio
    async def test_update_rating_keeps_series_cache(self, wrapper, transport):
        transport.json("GET", "/content/v2/cms/series/s1/", {"data": [{"id": "s1"}]})
        transport.json("PUT", RATING, {"rating": "5s"})

        await wrapper.get_series("s1")
        result = await wrapper.update_user_rating("s1", "5s")
        await wrapper.get_series("s1")

        assert result.success
        assert transport.count("GET", "/content/v2/cms/series/s1/") == 1
        put = next(c for c in transport.calls if c["method"] == "PUT")
        assert put["json_body"] == {"rating": "5s"}

    @pytest.mark.asyncio
    async def test_remove_rating(self, wrapper, transport):
        transport.json("DELETE", RATING, None, status=204)
        assert (await wrapper.remove_user_rating("s1")).success

    @pytest.mark.asyncio
    async def test_rating_failure(self, wrapper, transport):
        transport.json("PUT", RATING, {"message": "bad rating"}, status=422)
        result = await wrapper.update_user_rating("s1", "9s")
        assert result == MutationResult(success=False, error="HTTP 422: bad rating")


def test_cache_prefixes():
    assert watchlist_cache_prefixes("acct") == [
        "/content/v2/discover/acct/watchlist",
        "/content/v2/acct/watchlist",
    ]
