"""
Response Cache

In-process key/value cache with per-entry time-to-live, placed in front of
the expensive retrieval and generation calls. Entries are evicted lazily on
lookup.
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Default time-to-live per request kind, in seconds
QUERY_TTL = 300
SEARCH_TTL = 900
ARTICLE_TTL = 1800
SUMMARY_TTL = 3600


def query_key(text: str) -> str:
    return f"query:{text}"


def search_key(term: str, limit: int) -> str:
    return f"search:{term}:{limit}"


def article_key(article_id: str) -> str:
    return f"article:{article_id}"


def summary_key(url: str) -> str:
    return f"summary:{url}"


@dataclass
class CacheEntry:
    """A cached value and the clock reading after which it is stale."""
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class ResponseCache:
    """
    Thread-safe TTL cache.

    Concurrent misses for the same key are not coalesced: each caller computes
    and the last write wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize an empty cache.

        Args:
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        """Return a live entry, evicting it if stale. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        """
        Get a cached value.

        Returns:
            The value, or None if absent or expired
        """
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._misses += 1
                logger.debug(f"Cache miss: {key}")
                return None
            self._hits += 1

        logger.debug(f"Cache hit: {key}")
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a value that expires `ttl` seconds from now."""
        if ttl < 0:
            raise ValueError(f"ttl must be non-negative, got {ttl}")
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_compute(self, key: str, ttl: float, compute: Callable[[], Any]) -> Any:
        """
        Return the cached value for key, computing and storing it on a miss.

        `compute` runs outside the lock, so slow calls do not block other keys.
        If it raises, nothing is stored and the exception propagates.

        Args:
            key: Cache key
            ttl: Time-to-live in seconds for a newly computed value
            compute: Zero-argument callable producing the value

        Returns:
            Cached or freshly computed value
        """
        with self._lock:
            entry = self._lookup(key)
            if entry is not None:
                self._hits += 1
            else:
                self._misses += 1

        if entry is not None:
            logger.debug(f"Cache hit: {key}")
            return entry.value

        logger.debug(f"Cache miss: {key}")
        value = compute()
        self.set(key, value, ttl)
        return value

    def remove(self, key: str) -> bool:
        """
        Drop an entry.

        Returns:
            True if a live entry was removed
        """
        with self._lock:
            return self._lookup(key) is not None and self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
        logger.info("Response cache cleared")

    def size(self) -> int:
        """Number of live entries (stale entries are purged first)."""
        with self._lock:
            now = self._clock()
            for key in [k for k, entry in self._entries.items() if entry.is_expired(now)]:
                del self._entries[key]
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with size, hits, misses and hit rate
        """
        size = self.size()
        with self._lock:
            hits, misses = self._hits, self._misses

        total = hits + misses
        return {
            'size': size,
            'hits': hits,
            'misses': misses,
            'hit_rate': hits / total if total > 0 else 0.0
        }
