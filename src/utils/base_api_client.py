"""
Base API Client - Shared aiohttp request handling with deduplication, rate limiting
and retry logic. API services inherit from this and call _core_async_request.
"""

import asyncio
import json
import os
import random
from typing import Any

import aiohttp

from utils.get_logger import get_logger
from utils.rate_limiter import get_rate_limiter

logger = get_logger(__name__)

# Unit tests mock the transport, so rate limiting only slows them down
_SKIP_RATE_LIMITING = os.getenv("ENVIRONMENT", "").lower() == "test"

_MUTATION_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class NoOpRateLimiter:
    async def __aenter__(self) -> Any:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        return None


async def _read_payload(response: aiohttp.ClientResponse) -> Any:
    """Parse a response body as JSON, falling back to raw text (or None when empty)."""
    try:
        text = await response.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return None
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class BaseAPIClient:
    """
    Base class for API clients with shared request handling.
    Provides GET deduplication, rate limiting and retry logic.
    """

    _rate_limit_max = 10
    _rate_limit_period = 1.0
    # Seconds; exponential backoff is backoff_base * 2**(attempt - 1)
    backoff_base = 1.0
    max_rate_limit_retries = 10

    def __init__(self) -> None:
        # Concurrent identical GETs share one in-flight task
        self._pending_requests: dict[str, asyncio.Task] = {}

    def forget_pending_requests(self, fragment: str = "") -> int:
        """Stop sharing in-flight GETs whose URL contains fragment.

        Waiters already attached keep their result; later identical GETs start a
        fresh request instead of joining one issued before a write.
        """
        stale = [key for key in self._pending_requests if fragment in key.split("|", 2)[1]]
        for key in stale:
            del self._pending_requests[key]
        return len(stale)

    def _get_rate_limiter(self, rate_limit_max: int, rate_limit_period: float) -> Any:
        if _SKIP_RATE_LIMITING:
            return NoOpRateLimiter()
        return get_rate_limiter(rate_limit_max, rate_limit_period)

    async def _core_async_request(
        self,
        method: str,
        url: str,
        json_body: Any = None,
        data: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: int = 30,
        max_retries: int = 3,
        rate_limit_max: int | None = None,
        rate_limit_period: float | None = None,
    ) -> tuple[Any, int]:
        """
        Core async HTTP request with deduplication, rate limiting, and retry logic.

        This method handles:
        - Request deduplication: concurrent identical GETs share one network call
        - Rate limiting: coordinates requests to stay within limits
        - Retry logic: Retry-After with jitter for 429, exponential backoff for 5xx
          and transport errors. Other 4xx responses are returned immediately.

        Args:
            method: HTTP method ("GET", "POST", "PUT", "DELETE")
            url: Full URL including query string
            json_body: Optional JSON body (mutating methods only)
            data: Optional pre-encoded string body (mutating methods only)
            headers: Optional HTTP headers
            timeout: Request timeout in seconds (default: 30)
            max_retries: Maximum retry attempts (default: 3)
            rate_limit_max: Maximum requests per period (default: class setting)
            rate_limit_period: Period in seconds (default: class setting)

        Returns:
            tuple (payload, status_code); payload is parsed JSON, raw text, or None

        Raises:
            aiohttp.ClientError / TimeoutError: when every attempt failed in transport
        """
        method = method.upper()

        async def _send() -> tuple[Any, int]:
            return await self._send_with_retries(
                method,
                url,
                json_body=json_body,
                data=data,
                headers=headers,
                timeout=timeout,
                max_retries=max_retries,
                rate_limit_max=rate_limit_max or self._rate_limit_max,
                rate_limit_period=rate_limit_period or self._rate_limit_period,
            )

        if method != "GET":
            return await _send()

        headers_str = json.dumps(headers, sort_keys=True) if headers else "{}"
        request_key = f"GET|{url}|{headers_str}"

        task = self._pending_requests.get(request_key)
        if task is None:
            task = asyncio.ensure_future(_send())
            self._pending_requests[request_key] = task

            def _release(done: asyncio.Task, key: str = request_key) -> None:
                if self._pending_requests.get(key) is done:
                    del self._pending_requests[key]

            task.add_done_callback(_release)

        # A caller abandoning the request must not cancel it for the others
        return await asyncio.shield(task)

    async def _send_with_retries(
        self,
        method: str,
        url: str,
        json_body: Any,
        data: str | None,
        headers: dict[str, str] | None,
        timeout: int,
        max_retries: int,
        rate_limit_max: int,
        rate_limit_period: float,
    ) -> tuple[Any, int]:
        request_timeout = aiohttp.ClientTimeout(total=timeout)
        rate_limiter = self._get_rate_limiter(rate_limit_max, rate_limit_period)

        request_kwargs: dict[str, Any] = {"headers": headers, "timeout": request_timeout}
        if method in _MUTATION_METHODS and method != "DELETE":
            if data is not None:
                request_kwargs["data"] = data
            elif json_body is not None:
                request_kwargs["json"] = json_body

        rate_limit_retries = 0
        attempt = 0
        payload: Any = None
        status = 500

        while attempt < max_retries:
            try:
                async with (  # noqa: SIM117
                    rate_limiter,
                    aiohttp.ClientSession() as session,
                    session.request(method, url, **request_kwargs) as response,
                ):
                    status = response.status
                    payload = await _read_payload(response)

                    if status == 429:
                        rate_limit_retries += 1
                        if rate_limit_retries > self.max_rate_limit_retries:
                            logger.error(
                                f"Rate limit retries exhausted ({self.max_rate_limit_retries}) for {url}"
                            )
                            return payload, status
                        retry_after_header = response.headers.get("Retry-After", "2")
                        try:
                            retry_after = float(retry_after_header)
                        except (TypeError, ValueError):
                            retry_after = 2.0
                        wait_time = retry_after + random.uniform(0.1, 0.5)
                        logger.warning(
                            f"Rate limit hit for {url} (retry {rate_limit_retries}/"
                            f"{self.max_rate_limit_retries}). Waiting {wait_time:.2f}s..."
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    if status >= 500:
                        attempt += 1
                        logger.warning(f"API returned status {status} for {method} {url}")
                        if attempt < max_retries:
                            await asyncio.sleep(self.backoff_base * 2 ** (attempt - 1))
                            continue
                        return payload, status

                    if status == 404:
                        logger.debug(f"API returned 404 for {method} {url} (resource not found)")
                    elif status >= 400:
                        logger.warning(f"API returned status {status} for {method} {url}")

                    return payload, status

            except asyncio.CancelledError:
                raise
            except (TimeoutError, aiohttp.ClientError) as e:
                attempt += 1
                if attempt >= max_retries:
                    logger.error(
                        f"Error making {method} request to {url} after {max_retries} attempts: {e}"
                    )
                    raise
                backoff_time = self.backoff_base * 2 ** (attempt - 1)
                logger.warning(
                    f"{method} request to {url} failed (attempt {attempt}/{max_retries}): {e}. "
                    f"Retrying in {backoff_time}s..."
                )
                await asyncio.sleep(backoff_time)

        return payload, status
