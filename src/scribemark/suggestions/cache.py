"""Result cache and in-flight request deduplication for analysis calls.

Entries are keyed by ``(fingerprint, category)`` so two categories analysing
the same window never share results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from .models import Suggestion, SuggestionCategory

__all__ = [
    "SuggestionCache",
    "SuggestionCacheConfig",
    "SuggestionCacheEntry",
    "SuggestionCacheStats",
    "compute_fingerprint",
]

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Sequence[Suggestion]]]
CacheKey = tuple[str, str]

_HASH_MASK = 0xFFFFFFFF


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def compute_fingerprint(text: str) -> str:
    """Return a stable 32-bit rolling hash of ``text`` as 8 hex characters.

    The value only has to distinguish recently analysed windows of the same
    session, so collisions are tolerable and speed matters more than spread.
    """

    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & _HASH_MASK
    return f"{value:08x}"


# -----------------------------------------------------------------------------
# Cache Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class SuggestionCacheConfig:
    """Configuration for the suggestion cache.

    Attributes:
        max_entries: Maximum number of results to keep.
        ttl_seconds: Time-to-live for entries in seconds (0 = no expiry).
        track_stats: Whether to track cache statistics.
    """

    max_entries: int = 100
    ttl_seconds: float = 300.0
    track_stats: bool = True


# -----------------------------------------------------------------------------
# Cache Entry
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class SuggestionCacheEntry:
    suggestions: tuple[Suggestion, ...]
    fingerprint: str
    category: SuggestionCategory
    created_at: float = field(default_factory=time.monotonic)
    accessed_at: float = field(default_factory=time.monotonic)
    access_count: int = 0

    def touch(self) -> None:
        self.accessed_at = time.monotonic()
        self.access_count += 1

    def is_expired(self, ttl_seconds: float) -> bool:
        if ttl_seconds <= 0:
            return False
        return time.monotonic() - self.created_at > ttl_seconds


# -----------------------------------------------------------------------------
# Cache Statistics
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class SuggestionCacheStats:
    """Counters for cache operations.

    Attributes:
        hits: Lookups answered from the cache.
        misses: Lookups that found nothing usable.
        deduplicated: Requests that joined an identical in-flight fetch.
        fetches: Fetches actually started.
        failures: Fetches that raised.
        evictions: Entries dropped by the size limit.
        expirations: Entries dropped by the TTL.
        invalidations: Explicit removals.
    """

    hits: int = 0
    misses: int = 0
    deduplicated: int = 0
    fetches: int = 0
    failures: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        total = self.total_requests
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for logging."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "deduplicated": self.deduplicated,
            "fetches": self.fetches,
            "failures": self.failures,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "invalidations": self.invalidations,
            "total_requests": self.total_requests,
            "hit_rate": self.hit_rate,
        }

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.deduplicated = 0
        self.fetches = 0
        self.failures = 0
        self.evictions = 0
        self.expirations = 0
        self.invalidations = 0


# -----------------------------------------------------------------------------
# Suggestion Cache
# -----------------------------------------------------------------------------


class SuggestionCache:
    """LRU + TTL cache of analysis results with in-flight deduplication.

    The cache lives on the event loop thread; no locking is performed.

    Example:
        >>> cache = SuggestionCache()
        >>> fingerprint = compute_fingerprint(window.text)
        >>> suggestions = await cache.get_or_fetch(fingerprint, "grammar", fetch)
    """

    def __init__(self, config: SuggestionCacheConfig | None = None) -> None:
        self._config = config or SuggestionCacheConfig()
        self._cache: OrderedDict[CacheKey, SuggestionCacheEntry] = OrderedDict()
        self._inflight: dict[CacheKey, asyncio.Future[tuple[Suggestion, ...]]] = {}
        self._stats = SuggestionCacheStats() if self._config.track_stats else None

    @property
    def config(self) -> SuggestionCacheConfig:
        return self._config

    @property
    def stats(self) -> SuggestionCacheStats | None:
        """Cache statistics (None if tracking disabled)."""
        return self._stats

    def get(self, fingerprint: str, category: SuggestionCategory | str) -> tuple[Suggestion, ...] | None:
        """Return the cached suggestions, or ``None`` on a miss.

        An empty tuple is a valid hit: the window was analysed and is clean.
        """

        key = _key(fingerprint, category)
        entry = self._cache.get(key)
        if entry is None:
            if self._stats:
                self._stats.misses += 1
            return None

        if entry.is_expired(self._config.ttl_seconds):
            del self._cache[key]
            if self._stats:
                self._stats.expirations += 1
                self._stats.misses += 1
            LOGGER.debug("Cache entry expired for %s/%s", key[1], fingerprint)
            return None

        entry.touch()
        self._cache.move_to_end(key)
        if self._stats:
            self._stats.hits += 1
        return entry.suggestions

    def set(
        self,
        fingerprint: str,
        category: SuggestionCategory | str,
        suggestions: Sequence[Suggestion],
    ) -> None:
        key = _key(fingerprint, category)
        entry = SuggestionCacheEntry(
            suggestions=tuple(suggestions),
            fingerprint=fingerprint,
            category=SuggestionCategory.coerce(category),
        )
        if key in self._cache:
            self._cache[key] = entry
            self._cache.move_to_end(key)
            return

        while self._cache and len(self._cache) >= self._config.max_entries:
            evicted, _ = self._cache.popitem(last=False)
            if self._stats:
                self._stats.evictions += 1
            LOGGER.debug("Evicted cache entry for %s/%s", evicted[1], evicted[0])
        self._cache[key] = entry

    def invalidate(self, fingerprint: str, category: SuggestionCategory | str) -> bool:
        key = _key(fingerprint, category)
        if key not in self._cache:
            return False
        del self._cache[key]
        if self._stats:
            self._stats.invalidations += 1
        return True

    def invalidate_category(self, category: SuggestionCategory | str) -> int:
        value = SuggestionCategory.coerce(category).value
        doomed = [key for key in self._cache if key[1] == value]
        for key in doomed:
            del self._cache[key]
        if self._stats:
            self._stats.invalidations += len(doomed)
        if doomed:
            LOGGER.debug("Invalidated %d cache entries for %s", len(doomed), value)
        return len(doomed)

    def invalidate_all(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        if self._stats:
            self._stats.invalidations += count
        LOGGER.debug("Invalidated all %d cache entries", count)
        return count

    def contains(self, fingerprint: str, category: SuggestionCategory | str) -> bool:
        """Membership test that neither checks expiry nor updates recency."""

        return _key(fingerprint, category) in self._cache

    def size(self) -> int:
        return len(self._cache)

    def pending_count(self) -> int:
        return len(self._inflight)

    def cleanup_expired(self) -> int:
        if self._config.ttl_seconds <= 0:
            return 0
        expired = [key for key, entry in self._cache.items() if entry.is_expired(self._config.ttl_seconds)]
        for key in expired:
            del self._cache[key]
        if self._stats:
            self._stats.expirations += len(expired)
        if expired:
            LOGGER.debug("Cleaned up %d expired cache entries", len(expired))
        return len(expired)

    async def get_or_fetch(
        self,
        fingerprint: str,
        category: SuggestionCategory | str,
        fetcher: Fetcher,
    ) -> tuple[Suggestion, ...]:
        """Return cached suggestions or fetch them once for all concurrent callers.

        A failed fetch is not stored; every waiter receives the exception.
        """

        cached = self.get(fingerprint, category)
        if cached is not None:
            return cached

        key = _key(fingerprint, category)
        pending = self._inflight.get(key)
        if pending is not None:
            if self._stats:
                self._stats.deduplicated += 1
            LOGGER.debug("Joining in-flight %s request for %s", key[1], fingerprint)
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._fetch(key, fetcher))
        self._inflight[key] = task
        return await asyncio.shield(task)

    async def _fetch(self, key: CacheKey, fetcher: Fetcher) -> tuple[Suggestion, ...]:
        if self._stats:
            self._stats.fetches += 1
        try:
            result = tuple(await fetcher())
        except BaseException:
            if self._stats:
                self._stats.failures += 1
            raise
        else:
            self.set(key[0], key[1], result)
            return result
        finally:
            self._inflight.pop(key, None)


def _key(fingerprint: str, category: SuggestionCategory | str) -> CacheKey:
    return (fingerprint, SuggestionCategory.coerce(category).value)
