"""
Shared fixtures for Crunchyroll access layer tests.

The transport is replaced by a FakeTransport routed on (method, path), the
credential source by a counting stub, and wall-clock time by a FakeClock.
"""

# Set environment to test mode FIRST, before any imports
import os

os.environ["ENVIRONMENT"] = "test"

import asyncio
from typing import Any
from urllib.parse import parse_qs, urlsplit

import pytest

from api.crunchyroll.auth import CrunchyrollAuth
from api.crunchyroll.config import CrunchyrollSettings
from api.crunchyroll.core import CrunchyrollService
from api.crunchyroll.models import CredentialsPayload
from api.crunchyroll.wrappers import CrunchyrollWrapper

NOW = 1_700_000_000.0


def pytest_configure(config):
    """Pytest hook to configure test environment before any tests run."""
    os.environ["ENVIRONMENT"] = "test"


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubCredentialSource:
    """Counts bootstrap requests; optionally slow to answer."""

    def __init__(self, payload: CredentialsPayload | None = None, delay: float = 0.0):
        self.payload = payload
        self.delay = delay
        self.calls = 0

    async def request_credentials(self, retries: int = 2) -> CredentialsPayload | None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.payload


class FakeTransport:
    """Stand-in for BaseAPIClient._core_async_request.

    Routes match on method and exact URL path. Each route holds a queue of
    outcomes, `(payload, status)` tuples or exceptions; the last one repeats.
    Unrouted requests answer 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, path: str, *outcomes: Any) -> None:
        self.routes[(method.upper(), path)] = list(outcomes)

    def json(self, method: str, path: str, payload: Any, status: int = 200) -> None:
        self.add(method, path, (payload, status))

    async def __call__(self, method: str, url: str, **kwargs: Any) -> tuple[Any, int]:
        parts = urlsplit(url)
        self.calls.append(
            {
                "method": method,
                "url": url,
                "host": parts.netloc,
                "path": parts.path,
                "query": parse_qs(parts.query),
                **kwargs,
            }
        )
        outcomes = self.routes.get((method.upper(), parts.path))
        if not outcomes:
            return {"message": "not found"}, 404
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def count(self, method: str, path: str) -> int:
        return sum(1 for c in self.calls if c["method"] == method and c["path"] == path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token_payload():
    return {
        "access_token": "token-1",
        "account_id": "acct-1",
        "expires_in": 3600,
        "country": "US",
    }


@pytest.fixture
def profile_payload():
    return {
        "profiles": [
            {"profile_id": "profile-0", "is_selected": False},
            {"profile_id": "profile-1", "is_selected": True},
        ]
    }


@pytest.fixture
def credentials(token_payload, profile_payload):
    return CredentialsPayload(tokenData=token_payload, profileData=profile_payload)


@pytest.fixture
def credential_source(credentials):
    return StubCredentialSource(credentials)


@pytest.fixture
def make_source():
    """Factory for stub sources with custom payloads or delays."""
    return StubCredentialSource


@pytest.fixture
def auth(credential_source, clock):
    return CrunchyrollAuth(credential_source=credential_source, clock=clock)


@pytest.fixture
def settings():
    return CrunchyrollSettings(api_base="https://api.test", play_api_base="https://play.test")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def service(auth, settings, transport, monkeypatch):
    service = CrunchyrollService(auth, settings=settings)
    monkeypatch.setattr(service, "_core_async_request", transport)
    return service


@pytest.fixture
def wrapper(service):
    return CrunchyrollWrapper(service)
