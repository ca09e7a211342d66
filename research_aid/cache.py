"""Time-bounded in-memory caching for quote batches."""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class QuoteCache:
    """
    Holds provider results for a fixed window so repeated requests reuse them.

    The universe batch is expensive to fetch and only meaningful at
    multi-minute granularity, so it is served from here until it expires.

    Representation Invariants:
    - ttl_seconds is positive
    - Every entry is stored as (expires_at, value) on the cache's clock
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize an empty cache.

        Args:
            ttl_seconds: How long an entry stays fresh
            clock: Monotonic time source (injectable for tests)
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value for key, or None if absent or expired.

        Expired entries are evicted on read.
        """
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, value = item
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any) -> None:
        """Store value under key for one TTL window."""
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, value)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)
