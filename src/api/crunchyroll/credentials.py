"""
Credential bootstrap protocol.

The host-page scraper owns the live token. The client posts a REQUEST_CREDENTIALS
message and waits for a correlated CREDENTIALS_RESPONSE. An unanswered request
means "credentials not captured yet", not a network failure, so it is retried
with a short linear backoff and finally reported as None.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import ValidationError

from api.crunchyroll.models import CredentialsPayload, CredentialsTimeoutError
from utils.get_logger import get_logger

logger = get_logger(__name__)

REQUEST_CREDENTIALS = "REQUEST_CREDENTIALS"
CREDENTIALS_RESPONSE = "CREDENTIALS_RESPONSE"

DEFAULT_TIMEOUT = 5.0
DEFAULT_BACKOFF = 0.3

Message = dict[str, Any]
MessageListener = Callable[[Message], None]


class MessageChannel(Protocol):
    """Asynchronous, fire-and-forget message bus shared with the scraper."""

    async def post_message(self, message: Message) -> None: ...

    def add_listener(self, listener: MessageListener) -> None: ...

    def remove_listener(self, listener: MessageListener) -> None: ...


class CredentialSource(Protocol):
    async def request_credentials(self, retries: int = 2) -> CredentialsPayload | None: ...


class MessageChannelCredentialSource:
    """Requests `{tokenData, profileData}` from the scraper over a MessageChannel."""

    def __init__(
        self,
        channel: MessageChannel,
        timeout: float = DEFAULT_TIMEOUT,
        backoff: float = DEFAULT_BACKOFF,
        source: str = "crunchyroll-api",
    ):
        self.channel = channel
        self.timeout = timeout
        self.backoff = backoff
        self.source = source

    async def _request_once(self) -> CredentialsPayload | None:
        """Send one request and wait for its answer.

        Raises:
            CredentialsTimeoutError: no correlated answer within the timeout
        """
        loop = asyncio.get_running_loop()
        answer: asyncio.Future[Any] = loop.create_future()
        correlation_id = uuid.uuid4().hex

        def _on_message(message: Message) -> None:
            if not isinstance(message, dict) or message.get("type") != CREDENTIALS_RESPONSE:
                return
            # Older scrapers answer without echoing the correlation id
            if message.get("correlation_id") not in (None, correlation_id):
                return
            if not answer.done():
                answer.set_result(message.get("credentials"))

        self.channel.add_listener(_on_message)
        try:
            await self.channel.post_message(
                {
                    "type": REQUEST_CREDENTIALS,
                    "source": self.source,
                    "correlation_id": correlation_id,
                }
            )
            try:
                credentials = await asyncio.wait_for(answer, timeout=self.timeout)
            except TimeoutError as e:
                raise CredentialsTimeoutError(
                    f"No credentials response within {self.timeout}s"
                ) from e
        finally:
            self.channel.remove_listener(_on_message)

        if not credentials:
            return None
        try:
            payload = CredentialsPayload.model_validate(credentials)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed credentials response: {e.error_count()} invalid fields")
            return None
        if not payload.token_data and not payload.profile_data:
            return None
        return payload

    async def request_credentials(self, retries: int = 2) -> CredentialsPayload | None:
        """Ask the scraper for credentials, trying up to retries + 1 times.

        Returns:
            The scraper's payload, or None once every attempt went unanswered
        """
        for attempt in range(retries + 1):
            try:
                payload = await self._request_once()
                if payload is not None:
                    return payload
                logger.debug(f"Scraper answered without credentials (attempt {attempt + 1})")
            except CredentialsTimeoutError as e:
                logger.warning(f"Credentials request timed out (attempt {attempt + 1}): {e}")

            if attempt < retries:
                await asyncio.sleep(self.backoff * (attempt + 1))

        logger.warning(f"No credentials after {retries + 1} attempts")
        return None


class InProcessMessageChannel:
    """MessageChannel whose both ends live on the same event loop.

    Every posted message is delivered to every listener on the next loop
    iteration, mirroring window.postMessage.
    """

    def __init__(self) -> None:
        self._listeners: list[MessageListener] = []

    async def post_message(self, message: Message) -> None:
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(listener, message)

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


class CredentialResponder:
    """Scraper-side end of the protocol: answers REQUEST_CREDENTIALS messages.

    `provider` returns the `{tokenData, profileData}` dict, or None while nothing
    has been captured (the request is then left unanswered).
    """

    def __init__(
        self,
        channel: MessageChannel,
        provider: Callable[[], Awaitable[dict[str, Any] | None]],
    ):
        self.channel = channel
        self.provider = provider
        self.requests_seen = 0
        self._tasks: set[asyncio.Task] = set()

    def start(self) -> "CredentialResponder":
        self.channel.add_listener(self._on_message)
        return self

    def stop(self) -> None:
        self.channel.remove_listener(self._on_message)

    def _on_message(self, message: Message) -> None:
        if not isinstance(message, dict) or message.get("type") != REQUEST_CREDENTIALS:
            return
        self.requests_seen += 1
        task = asyncio.ensure_future(self._answer(message.get("correlation_id")))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _answer(self, correlation_id: str | None) -> None:
        credentials = await self.provider()
        if credentials is None:
            return
        await self.channel.post_message(
            {
                "type": CREDENTIALS_RESPONSE,
                "correlation_id": correlation_id,
                "credentials": credentials,
            }
        )
