"""
Per-subscriber state reconciliation.

Combines liveness pings and outage-source summaries into one light state
timeline per subscriber:

- ping_only / full: the liveness timeout decides; in full mode outage data is
  only appended to the Off notification as advisory text.
- outage_only: the outage summary decides, at most once per check interval.
- none: nothing to decide; only an existing pinned message is refreshed.
"""

import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from power_watch.config_loader import Timings
from power_watch.dispatcher import NotificationDispatcher
from power_watch.log import log_event
from power_watch.logic import (
    classify_mode,
    format_state_summary,
    is_first_contact,
    outage_check_due,
    process_liveness_timeout,
    process_outage_summary,
    process_ping,
)
from power_watch.messages import greeting_message, light_off_message, light_on_message, status_message
from power_watch.models import Mode, OutageSummary, SubscriberRecord
from power_watch.outage_cache import OutageSummaryCache
from power_watch.state_store import SubscriberStore
from power_watch.ttl_cache import TTLCache

# Never written by _persist(); mode goes through the debounced sync_mode()
DERIVED_FIELDS = {"mode"}


class StateReconciler:
    """Decides light state transitions and drives persistence and notifications."""

    def __init__(
        self,
        store: SubscriberStore,
        outage_cache: OutageSummaryCache,
        dispatcher: NotificationDispatcher,
        timings: Timings,
        timezone: ZoneInfo,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.outage_cache = outage_cache
        self.dispatcher = dispatcher
        self.timings = timings
        self.timezone = timezone
        self._clock = clock
        self._mode_writes: TTLCache[Mode] = TTLCache(timings.mode_write_debounce, clock=monotonic)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, subscriber_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(subscriber_id)
            if lock is None:
                lock = self._locks[subscriber_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------ persistence

    def _persist(self, old: Optional[SubscriberRecord], new: SubscriberRecord) -> None:
        """Write only the attributes that changed."""
        new_item = new.to_item()
        if old is None:
            new_item["mode"] = classify_mode(new).value
            self.store.upsert(new.subscriber_id, new_item)
            return

        old_item = old.to_item()
        changed = {
            name: value
            for name, value in new_item.items()
            if name not in DERIVED_FIELDS and old_item.get(name) != value
        }
        if changed:
            self.store.upsert(new.subscriber_id, changed)

    def sync_mode(self, record: SubscriberRecord) -> Mode:
        """
        Recompute the mode and persist it when it differs from the stored value.

        Writes for the same subscriber are debounced so that racing
        evaluations do not write the same value repeatedly.
        """
        mode = classify_mode(record)
        if mode != record.mode and self._mode_writes.check_and_mark(record.subscriber_id, mode):
            self.store.upsert(record.subscriber_id, {"mode": mode.value})
            log_event(
                "mode_changed",
                subscriber_id=record.subscriber_id,
                old_mode=record.mode.value,
                new_mode=mode.value,
            )
        return mode

    def _refresh_pinned(self, record: SubscriberRecord, mode: Mode, now: float, force: bool = False) -> None:
        text = status_message(record, now, self.timezone, mode)
        ref = self.dispatcher.refresh_pinned(record.subscriber_id, record.pinned_message_ref, text, force=force)
        if ref != record.pinned_message_ref:
            self.store.upsert(record.subscriber_id, {"pinned_message_ref": ref})

    def outage_summary_for(self, record: SubscriberRecord) -> Optional[OutageSummary]:
        if record.address is None or not record.address.is_complete:
            return None
        return self.outage_cache.get_or_fetch(*record.address.cache_key)

    # ------------------------------------------------------------------- ping

    def handle_ping(self, subscriber_id: str) -> SubscriberRecord:
        """
        Record an inbound liveness ping.

        Duplicate pings while the light is on only advance last_liveness_time.
        """
        subscriber_id = str(subscriber_id)
        now = self._clock()

        with self._lock_for(subscriber_id):
            record = self.store.get(subscriber_id, fresh=True)
            first_contact = is_first_contact(record)

            if record is not None and record.suppressed:
                self.store.upsert(subscriber_id, {"last_liveness_time": now})
                log_event("ping_received", subscriber_id=subscriber_id, suppressed=True)
                return replace(record, last_liveness_time=now)

            new_record, should_notify = process_ping(record, subscriber_id, now)
            self._persist(record, new_record)
            mode = self.sync_mode(new_record) if record is not None else classify_mode(new_record)
            new_record = replace(new_record, mode=mode)

            log_event(
                "ping_received",
                subscriber_id=subscriber_id,
                transitioned=should_notify,
                state=format_state_summary(new_record, now),
            )

            if should_notify:
                if first_contact:
                    text = greeting_message(now, self.timezone)
                else:
                    text = light_on_message(new_record.previous_duration, now, self.timezone)
                    log_event(
                        "state_transition",
                        subscriber_id=subscriber_id,
                        light_state=True,
                        previous_duration=new_record.previous_duration,
                        source="ping",
                    )
                self.dispatcher.send(subscriber_id, text)

            self._refresh_pinned(new_record, mode, now, force=should_notify)
            return new_record

    # ------------------------------------------------------------- evaluation

    def evaluate(self, record: SubscriberRecord) -> bool:
        """
        Run one reconciliation step for a subscriber.

        Returns:
            True if the light state changed
        """
        subscriber_id = record.subscriber_id
        with self._lock_for(subscriber_id):
            # The batch snapshot may predate a ping handled meanwhile, possibly by another process
            latest = self.store.get(subscriber_id, fresh=True)
            if latest is not None:
                record = latest
            if record.suppressed:
                return False

            now = self._clock()
            mode = self.sync_mode(record)

            if mode in (Mode.PING_ONLY, Mode.FULL):
                return self._evaluate_liveness(record, mode, now)
            if mode == Mode.OUTAGE_ONLY:
                return self._evaluate_outage(record, mode, now)

            if record.pinned_message_ref is not None:
                self._refresh_pinned(record, mode, now)
            return False

    def _evaluate_liveness(self, record: SubscriberRecord, mode: Mode, now: float) -> bool:
        new_record, transitioned = process_liveness_timeout(record, now, self.timings.liveness_timeout)
        if not transitioned:
            self._refresh_pinned(record, mode, now)
            return False

        self._persist(record, new_record)
        log_event(
            "state_transition",
            subscriber_id=record.subscriber_id,
            light_state=False,
            previous_duration=new_record.previous_duration,
            source="liveness_timeout",
            silence_seconds=round(now - (record.last_liveness_time or now)),
        )

        details = ""
        if mode == Mode.FULL:
            summary = self.outage_summary_for(new_record)
            if summary is not None:
                details = summary.message

        self.dispatcher.send(
            record.subscriber_id,
            light_off_message(new_record.previous_duration, now, self.timezone, details),
        )
        self._refresh_pinned(new_record, mode, now, force=True)
        return True

    def _evaluate_outage(self, record: SubscriberRecord, mode: Mode, now: float) -> bool:
        if not outage_check_due(record, now, self.timings.outage_check_interval):
            self._refresh_pinned(record, mode, now)
            return False

        summary = self.outage_summary_for(record)
        if summary is None:
            return False

        new_record, transitioned = process_outage_summary(record, summary, now)
        self._persist(record, new_record)

        if not transitioned:
            log_event(
                "outage_check_no_change",
                level="debug",
                subscriber_id=record.subscriber_id,
                inferred_off=summary.inferred_off,
                fetch_failed=summary.fetch_failed,
                stale=summary.stale,
            )
            self._refresh_pinned(new_record, mode, now)
            return False

        log_event(
            "state_transition",
            subscriber_id=record.subscriber_id,
            light_state=new_record.light_state,
            previous_duration=new_record.previous_duration,
            source="outage_source",
            street_level=summary.street_level,
        )
        render = light_on_message if new_record.light_state else light_off_message
        self.dispatcher.send(
            record.subscriber_id,
            render(new_record.previous_duration, now, self.timezone, summary.message),
        )
        self._refresh_pinned(new_record, mode, now, force=True)
        return True

    def describe(self, record: SubscriberRecord) -> Dict[str, Any]:
        """Snapshot used by diagnostics and the local test script."""
        return {
            "subscriber_id": record.subscriber_id,
            "mode": classify_mode(record).value,
            "summary": format_state_summary(record, self._clock()),
        }
