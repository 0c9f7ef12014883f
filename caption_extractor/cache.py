"""
Time-bounded cache for intercepted transcript bodies.

Caption responses observed by the capture bus are stored here keyed by video
id, so the transcript fetcher can skip the page and caption round trips when
the player has just downloaded the same track.
"""

import logging
import time
from typing import Any, Callable

from cachetools import LRUCache

from caption_extractor.config import settings
from caption_extractor.schemas import CachedTranscriptPayload

logger = logging.getLogger(__name__)


class TranscriptCache:
    """
    In-memory cache for raw transcript payloads with a fixed freshness window.

    Size is bounded by a cachetools.LRUCache. Each entry keeps the timer
    reading taken when it was stored; an entry is fresh while its age is at
    most the TTL, and a lookup of an older entry reports it absent and
    removes it. One entry per video id; a newer capture overwrites the older
    one.
    """

    def __init__(
        self,
        ttl: float | None = None,
        maxsize: int | None = None,
        timer: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache with settings from configuration.

        Args:
            ttl: Freshness window in seconds (default: settings.transcript_cache_ttl)
            maxsize: Maximum number of entries (default: settings.transcript_cache_maxsize)
            timer: Monotonic clock used for expiry
        """
        self._hits = 0
        self._misses = 0
        self._ttl = ttl if ttl is not None else settings.transcript_cache_ttl
        self._maxsize = maxsize if maxsize is not None else settings.transcript_cache_maxsize
        self._timer = timer
        self._cache: LRUCache = LRUCache(maxsize=self._maxsize)

    @property
    def ttl(self) -> float:
        """Get the TTL in seconds."""
        return self._ttl

    def _is_stale(self, stored_at: float) -> bool:
        return self._timer() - stored_at > self._ttl

    def _lookup(self, video_id: str) -> CachedTranscriptPayload | None:
        entry = self._cache.get(video_id)
        if entry is None:
            return None
        stored_at, payload = entry
        if self._is_stale(stored_at):
            del self._cache[video_id]
            logger.debug(f"Transcript cache entry for video {video_id} expired")
            return None
        return payload

    def expire(self) -> None:
        """Remove every entry older than the TTL."""
        stale = [key for key, (stored_at, _) in self._cache.items() if self._is_stale(stored_at)]
        for video_id in stale:
            del self._cache[video_id]

    def get(self, video_id: str) -> str | None:
        """
        Get a cached transcript body if available and still fresh.

        Args:
            video_id: Canonical video id

        Returns:
            Raw transcript body, or None if absent or expired
        """
        payload = self._lookup(video_id)
        if payload is None:
            self._misses += 1
            return None

        self._hits += 1
        logger.debug(f"Transcript cache hit for video {video_id}")
        return payload.raw_body

    def get_entry(self, video_id: str) -> CachedTranscriptPayload | None:
        """Get the full cached payload without touching hit statistics."""
        return self._lookup(video_id)

    def put(self, video_id: str, raw_body: str, url: str | None = None) -> None:
        """
        Store a transcript body, overwriting any previous entry.

        Args:
            video_id: Canonical video id
            raw_body: Raw caption response body
            url: Request URL the body was captured from
        """
        payload = CachedTranscriptPayload(
            video_id=video_id,
            raw_body=raw_body,
            captured_at_ms=int(time.time() * 1000),
            url=url,
        )
        self._cache[video_id] = (self._timer(), payload)
        logger.debug(f"Transcript cached for video {video_id} ({len(raw_body)} chars)")

    def clear(self) -> None:
        """Clear all cached data."""
        size = len(self._cache)
        self._cache.clear()
        logger.info(f"Transcript cache cleared: {size} entries removed")

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache size, hits, misses, and hit rate
        """
        self.expire()
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate,
        }
