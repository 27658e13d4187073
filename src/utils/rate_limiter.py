"""
Rate Limiter Utility - Per-event-loop rate limiting per API host.

Each (max_rate, time_period) configuration gets one AsyncLimiter per event loop,
so limiters never leak across loops (pytest creates a fresh loop per test).

Usage:
    from utils.rate_limiter import get_rate_limiter

    limiter = get_rate_limiter(max_rate=10, time_period=1)
    async with limiter:
        ...
"""

from __future__ import annotations

import asyncio
import threading

from aiolimiter import AsyncLimiter

from utils.get_logger import get_logger

logger = get_logger(__name__)

_lock = threading.Lock()

# Key: (max_rate, time_period, loop_id)
_limiters: dict[tuple[int, float, int], AsyncLimiter] = {}


def get_rate_limiter(max_rate: int, time_period: float = 1.0) -> AsyncLimiter:
    """
    Get or create the limiter for this rate configuration on the running loop.

    Args:
        max_rate: Maximum number of requests allowed per period
        time_period: Period length in seconds (default: 1.0)

    Returns:
        AsyncLimiter bound to the current event loop
    """
    loop = asyncio.get_running_loop()
    cache_key = (max_rate, time_period, id(loop))

    if cache_key not in _limiters:
        with _lock:
            if cache_key not in _limiters:
                _limiters[cache_key] = AsyncLimiter(max_rate, time_period)
                logger.debug(
                    f"Created rate limiter for loop {id(loop)}: "
                    f"{max_rate} requests per {time_period}s"
                )

    return _limiters[cache_key]


def reset_rate_limiters() -> None:
    """Drop every limiter (used when an event loop is torn down)."""
    with _lock:
        _limiters.clear()
