"""
In-memory TTL cache for API responses.

Keys are `METHOD:full_url`. Entries expire lazily: an expired entry is evicted
the next time it is read, or by an explicit cleanup() sweep.
"""

import dataclasses
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from utils.get_logger import get_logger

DEFAULT_TTL = 5 * 60  # 5 minutes


@dataclass
class CacheEntry:
    data: Any = None
    expires_at: float = 0.0
    key: str = ""
    created_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self):
        return {field.name: getattr(self, field.name) for field in dataclasses.fields(self)}


class RequestCache:
    """
    TTL-keyed response cache.

    Entries are replaced on refetch, never mutated in place. Mutating API calls
    drop stale reads with invalidate_by_prefix().
    """

    def __init__(
        self,
        defaultTTL: float = DEFAULT_TTL,
        prefix: str = "",
        verbose: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.defaultTTL = defaultTTL
        self.prefix = prefix
        self.clock = clock
        self.cache: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0
        # Bumped by every invalidation; a fetch started under an older generation is not stored
        self.generation = 0
        level = logging.DEBUG if verbose else logging.WARNING
        logger_name = f"request_cache.{prefix}" if prefix else "request_cache"
        self.logging = get_logger(logger_name, level=level)

    @staticmethod
    def make_key(method: str, url: str) -> str:
        return f"{method.upper()}:{url}"

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the live entry for key, evicting it if it has expired."""
        entry = self.cache.get(key)
        if entry is None:
            self.misses += 1
            self.logging.debug(f"Cache miss: {key}")
            return None

        if entry.is_expired(self.clock()):
            del self.cache[key]
            self.misses += 1
            self.logging.debug(f"Cache expired: {key}")
            return None

        self.hits += 1
        self.logging.debug(f"Cache hit: {key}")
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.lookup(key)
        return entry.data if entry is not None else default

    def set(self, key: str, data: Any, ttl: float | None = None) -> CacheEntry:
        """Store data under key for ttl seconds (defaultTTL when omitted).

        Callers that fetched data before an invalidation should check
        `generation` first and skip storing a stale snapshot.
        """
        now = self.clock()
        ttl = self.defaultTTL if ttl is None else ttl
        entry = CacheEntry(data=data, expires_at=now + ttl, key=key, created_at=now)
        self.cache[key] = entry
        self.logging.debug(f"Cache set: {key} (ttl={ttl}s)")
        return entry

    def delete(self, key: str) -> bool:
        return self.cache.pop(key, None) is not None

    def invalidate_by_prefix(self, prefix: str) -> int:
        """Drop every entry whose key contains prefix. Returns the number dropped."""
        self.generation += 1
        stale = [key for key in self.cache if prefix in key]
        for key in stale:
            del self.cache[key]
        if stale:
            self.logging.debug(f"Invalidated {len(stale)} entries matching {prefix}")
        return len(stale)

    def cleanup(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        now = self.clock()
        expired = [key for key, entry in self.cache.items() if entry.is_expired(now)]
        for key in expired:
            del self.cache[key]
        self.logging.info(f"Cleaned {len(expired)} expired entries")
        return len(expired)

    def clear(self) -> None:
        self.generation += 1
        self.cache.clear()
        self.logging.info("Cache cleared")

    def stats(self) -> dict[str, int]:
        return {"entries": len(self.cache), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        return len(self.cache)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key) is not None
