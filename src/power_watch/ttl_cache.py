"""
Small thread-safe time-boxed map.

Used for the outage summary cache, the DynamoDB read cache, message dedup history,
the mode write debounce and the pinned message refresh throttle.
"""

import threading
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key/value map whose entries expire `ttl` seconds after they were written."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000):
        self.ttl = ttl
        self._clock = clock
        self._max_entries = max_entries
        self._entries: Dict[Hashable, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        """Return the value if present and fresh, else None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl:
                return None
            return value

    def get_entry(self, key: Hashable) -> Optional[Tuple[V, float]]:
        """
        Return (value, age_seconds) even for expired entries.

        Lets callers fall back to stale data when a refresh fails.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            return value, self._clock() - stored_at

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            if len(self._entries) >= self._max_entries:
                self._purge_locked()
            self._entries[key] = (self._clock(), value)

    def check_and_mark(self, key: Hashable, value: Optional[V] = None) -> bool:
        """
        Atomically test-and-set a rate limit slot.

        Returns:
            True if no fresh entry existed (the caller may proceed); the slot is then
            marked for another `ttl` seconds. False if the caller is still throttled.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < self.ttl:
                return False
            self._entries[key] = (now, value)  # type: ignore[assignment]
            return True

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge_locked(self) -> None:
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for k in expired:
            del self._entries[k]
        if len(self._entries) >= self._max_entries:
            # Still full: drop the oldest half
            oldest = sorted(self._entries.items(), key=lambda item: item[1][0])
            for k, _ in oldest[: len(oldest) // 2]:
                del self._entries[k]
