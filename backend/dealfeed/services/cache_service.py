"""In-process caches shared across requests.

Three caches live for the lifetime of the process and are created once in
the application lifespan, then injected where needed:

- ``TTLCache``: lazily refreshed value with single-flight loading
- ``TokenCache``: bearer token valid until its advertised expiry minus a margin
- ``SnapshotStore``: last successfully served response body per feed

Loads and refreshes are serialized by an ``asyncio.Lock``, so concurrent
requests never observe a half-written entry.
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with its load time."""

    value: T
    loaded_at: float
    expires_at: float


class TTLCache(Generic[T]):
    """Single-value cache refreshed lazily once its TTL has passed.

    A stale value is preferred over hammering the upstream: concurrent callers
    that arrive during a refresh wait for that one refresh instead of starting
    their own.
    """

    def __init__(self, name: str, ttl_seconds: float, clock: Clock = time.monotonic):
        """Initialize cache.

        Args:
            name: Cache name for logging
            ttl_seconds: Time-to-live of a loaded value
            clock: Monotonic time source (injectable for tests)
        """
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry[T]] = None
        self._lock = asyncio.Lock()
        self.logger = logger.bind(cache=name)

    def _fresh(self) -> Optional[CacheEntry[T]]:
        entry = self._entry
        if entry is not None and self._clock() < entry.expires_at:
            return entry
        return None

    async def get_or_load(self, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, loading it first if missing or expired.

        Args:
            loader: Coroutine factory producing a fresh value

        Raises:
            Whatever the loader raises; the previous entry is left untouched
        """
        entry = self._fresh()
        if entry is not None:
            self.logger.debug("cache_hit")
            return entry.value

        async with self._lock:
            # Another caller may have refreshed while we waited
            entry = self._fresh()
            if entry is not None:
                return entry.value

            self.logger.debug("cache_miss")
            value = await loader()
            now = self._clock()
            self._entry = CacheEntry(value=value, loaded_at=now, expires_at=now + self.ttl_seconds)
            self.logger.info("cache_refreshed", ttl=self.ttl_seconds)
            return value

    async def refresh(self, loader: Callable[[], Awaitable[T]]) -> T:
        """Load a fresh value now, regardless of TTL.

        The current entry is replaced only once the loader succeeds; on
        failure the previous value keeps being served and the error is raised.
        """
        async with self._lock:
            try:
                value = await loader()
            except Exception as e:
                self.logger.warning(
                    "cache_refresh_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    kept_previous=self._entry is not None,
                )
                raise
            now = self._clock()
            self._entry = CacheEntry(value=value, loaded_at=now, expires_at=now + self.ttl_seconds)
            self.logger.info("cache_refreshed", ttl=self.ttl_seconds, forced=True)
            return value

    def invalidate(self) -> None:
        """Drop the cached value; the next read reloads."""
        self._entry = None
        self.logger.info("cache_invalidated")

    def age_seconds(self) -> Optional[float]:
        """Seconds since the last load, or None if never loaded."""
        if self._entry is None:
            return None
        return self._clock() - self._entry.loaded_at


class TokenCache:
    """Holds one bearer token until shortly before it expires."""

    def __init__(self, name: str, margin_seconds: float = 600, clock: Clock = time.monotonic):
        """Initialize token cache.

        Args:
            name: Cache name for logging
            margin_seconds: Safety margin subtracted from the advertised lifetime
            clock: Monotonic time source (injectable for tests)
        """
        self.name = name
        self.margin_seconds = margin_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self.lock = asyncio.Lock()

    def get(self) -> Optional[str]:
        """Return the token if still usable."""
        if self._token and self._clock() < self._expires_at:
            return self._token
        return None

    def store(self, token: str, lifetime_seconds: float) -> None:
        """Cache a token for its lifetime minus the safety margin (at least 60s)."""
        usable = max(60.0, lifetime_seconds - self.margin_seconds)
        self._token = token
        self._expires_at = self._clock() + usable
        logger.info("token_cached", cache=self.name, usable_seconds=usable)

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


@dataclass
class Snapshot:
    """A previously served response body."""

    body: str
    etag: str
    stored_at: float


class SnapshotStore:
    """Last-known-good response bodies, used when a feed fails outright.

    Snapshots are keyed by feed name plus canonical query. A lookup that finds
    no exact match falls back to the newest snapshot of the same feed. Each
    feed keeps at most ``max_per_feed`` query keys; the least recently saved
    one is evicted first.
    """

    def __init__(self, max_per_feed: int = 200, clock: Clock = time.time):
        self.max_per_feed = max(1, max_per_feed)
        self._clock = clock
        self._by_feed: Dict[str, "OrderedDict[str, Snapshot]"] = {}
        self._latest: Dict[str, Snapshot] = {}

    def save(self, feed: str, query_key: str, body: str, etag: str) -> None:
        snapshot = Snapshot(body=body, etag=etag, stored_at=self._clock())
        entries = self._by_feed.setdefault(feed, OrderedDict())
        entries[query_key] = snapshot
        entries.move_to_end(query_key)
        while len(entries) > self.max_per_feed:
            evicted, _ = entries.popitem(last=False)
            logger.debug("snapshot_evicted", feed=feed, query=evicted)
        self._latest[feed] = snapshot

    def get(self, feed: str, query_key: str = "") -> Optional[Snapshot]:
        """Find the best snapshot for a feed/query, or None if the feed never succeeded."""
        exact = self._by_feed.get(feed, {}).get(query_key)
        return exact or self._latest.get(feed)

    def has(self, feed: str) -> bool:
        return feed in self._latest

    def size(self, feed: str) -> int:
        """Number of query keys held for a feed."""
        return len(self._by_feed.get(feed, ()))

    def clear(self) -> None:
        self._by_feed.clear()
        self._latest.clear()

    def feeds(self) -> Dict[str, float]:
        """Feed name -> timestamp of its newest snapshot."""
        return {feed: snap.stored_at for feed, snap in self._latest.items()}
