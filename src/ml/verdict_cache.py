"""
Fingerprint cache for classification verdicts
Maps a content hash of an image to the verdict computed for it
"""

import hashlib
import heapq
import logging
import threading
import time
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

DEFAULT_TTL_SECONDS = 300.0


def fingerprint(image_data: bytes) -> str:
    """SHA-256 hex digest of the decoded image bytes."""
    return hashlib.sha256(image_data).hexdigest()


class FingerprintCache(Generic[V]):
    """
    Best-effort expiring map keyed by image fingerprint.

    Expiries are kept in a min-heap, so eviction pops only the entries that
    are due instead of scheduling one timer per entry. Expired entries are
    never returned by `get`, but are only removed on writes or `purge_expired`.

    An empty cache is always a valid state; callers fall back to
    recomputing the verdict.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache.

        Args:
            ttl_seconds: Default time-to-live of an entry
            clock: Monotonic clock returning seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._entries: Dict[str, Tuple[float, V]] = {}
        self._expiries: List[Tuple[float, str]] = []
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        """Return the cached value, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(key)

        if entry is None:
            return None

        expires_at, value = entry
        if expires_at <= self._clock():
            return None

        return value

    def put(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        """
        Store a value. Last writer wins for a repeated key.

        Args:
            key: Image fingerprint
            value: Verdict to cache
            ttl: Override of the default time-to-live
        """
        now = self._clock()
        expires_at = now + (ttl if ttl is not None else self.ttl_seconds)

        with self._lock:
            self._entries[key] = (expires_at, value)
            heapq.heappush(self._expiries, (expires_at, key))
            self._evict(now)

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            return self._evict(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._expiries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _evict(self, now: float) -> int:
        removed = 0

        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            entry = self._entries.get(key)
            # A rewritten key leaves an outdated heap item behind
            if entry is not None and entry[0] == expires_at:
                del self._entries[key]
                removed += 1

        if removed:
            logger.debug(f"Evicted {removed} expired verdicts")

        return removed
