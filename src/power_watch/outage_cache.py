"""
Time-boxed cache in front of the outage source.
Subscribers on the same street share one fetch per refresh window, and fetch
failures are absorbed into a neutral "no information" summary.
"""

import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Tuple

from power_watch.log import log_error, log_event
from power_watch.models import OutageSummary, StreetOutageData
from power_watch.outage_interpreter import interpret
from power_watch.ttl_cache import TTLCache

FETCH_FAILED_MESSAGE = "⚠️ Не вдалося отримати дані ДТЕК"

Fetcher = Callable[[str, str, str], StreetOutageData]


class OutageSummaryCache:
    """get_or_fetch() with a per-address refresh window and single-flight fetches."""

    def __init__(
        self,
        fetcher: Fetcher,
        ttl: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            fetcher: fetch(city, street, house) -> StreetOutageData; raises on failure
            ttl: Refresh window in seconds
            clock: Monotonic time source
        """
        self._fetcher = fetcher
        self._entries: TTLCache[OutageSummary] = TTLCache(ttl, clock=clock)
        self._key_locks: Dict[Tuple[str, str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: Tuple[str, str, str]) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get_or_fetch(self, city: str, street: str, house: str = "") -> OutageSummary:
        """
        Return the outage summary for an address.

        An empty house means "whole street" and is cached separately from any
        specific house. Never raises for source failures.
        """
        key = (city, street, house or "")
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        with self._lock_for(key):
            # Another caller may have refreshed while we waited
            cached = self._entries.get(key)
            if cached is not None:
                return cached

            try:
                data = self._fetcher(city, street, house or "")
                summary = interpret(data, house or "")
            except Exception as e:
                log_error("outage_fetch_failed", e, city=city, street=street, house=house)
                return self._on_failure(key)

            self._entries.set(key, summary)
            log_event(
                "outage_summary_refreshed",
                city=city,
                street=street,
                house=house,
                inferred_off=summary.inferred_off,
                street_level=summary.street_level,
                source_update=summary.source_update_timestamp,
            )
            return summary

    def _on_failure(self, key: Tuple[str, str, str]) -> OutageSummary:
        previous = self._entries.get_entry(key)
        if previous is not None and not previous[0].fetch_failed:
            # Keep serving the last good answer, flagged so it cannot drive a transition
            stale = replace(previous[0], stale=True)
            self._entries.set(key, stale)
            return stale

        neutral = OutageSummary(
            inferred_off=False,
            message=FETCH_FAILED_MESSAGE,
            fetch_failed=True,
        )
        self._entries.set(key, neutral)
        return neutral
