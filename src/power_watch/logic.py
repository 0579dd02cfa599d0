"""
Core mode classification and light state transition logic.
Pure functions for testability: every function takes `now` explicitly and
returns a new record instead of mutating its input.
"""

from dataclasses import replace
from typing import Optional, Tuple

from power_watch.messages import format_duration
from power_watch.models import Mode, OutageSummary, SubscriberRecord, normalize_bool

LIVENESS_TIMEOUT_SECONDS = 180


def classify_mode(record: SubscriberRecord) -> Mode:
    """
    Derive the operating mode from raw record fields.

    The stored `record.mode` is never consulted.
    """
    has_address = record.address is not None and record.address.is_complete
    has_liveness = record.last_liveness_time is not None

    if has_address and has_liveness:
        return Mode.FULL
    if has_liveness:
        return Mode.PING_ONLY
    if has_address:
        return Mode.OUTAGE_ONLY
    return Mode.NONE


def is_first_contact(record: Optional[SubscriberRecord]) -> bool:
    """True when no light state timeline has been started for the subscriber yet."""
    return record is None or record.state_start_time is None


def apply_transition(record: SubscriberRecord, new_state: bool, now: float) -> SubscriberRecord:
    """
    Flip the light state.

    previous_duration is computed from the old state_start_time before it is
    overwritten. A missing start time yields a zero duration.
    """
    started = record.state_start_time if record.state_start_time is not None else now
    return replace(
        record,
        light_state=new_state,
        previous_duration=format_duration(now - min(started, now)),
        state_start_time=now,
    )


def process_ping(
    record: Optional[SubscriberRecord],
    subscriber_id: str,
    now: float,
) -> Tuple[SubscriberRecord, bool]:
    """
    Apply an inbound liveness ping.

    Args:
        record: Stored record, None on first contact
        subscriber_id: Pinging subscriber
        now: Current epoch seconds

    Returns:
        Tuple of (new_record, should_notify). should_notify is True on first
        contact (greeting) and on an Off -> On transition.
    """
    if record is None:
        new_record = SubscriberRecord(
            subscriber_id=subscriber_id,
            last_liveness_time=now,
            light_state=True,
            state_start_time=now,
        )
        return new_record, True

    if is_first_contact(record):
        # Stub created by a command (/start, /stop): keep its flags, start the timeline
        return replace(record, last_liveness_time=now, light_state=True, state_start_time=now), True

    if normalize_bool(record.light_state):
        # Already on: only the liveness marker moves
        return replace(record, last_liveness_time=now), False

    new_record = apply_transition(record, True, now)
    return replace(new_record, last_liveness_time=now), True


def process_liveness_timeout(
    record: SubscriberRecord,
    now: float,
    timeout: float = LIVENESS_TIMEOUT_SECONDS,
) -> Tuple[SubscriberRecord, bool]:
    """
    Detect a lost feed: no ping for longer than `timeout` while the light is on.

    Returns:
        Tuple of (new_record, should_notify)
    """
    if record.last_liveness_time is None or not normalize_bool(record.light_state):
        return record, False

    elapsed = now - record.last_liveness_time
    if elapsed <= timeout:
        return record, False

    return apply_transition(record, False, now), True


def process_outage_summary(
    record: SubscriberRecord,
    summary: OutageSummary,
    now: float,
) -> Tuple[SubscriberRecord, bool]:
    """
    Reconcile the stored state with an interpreted outage summary.

    Failed or stale summaries never cause a transition. The outage check
    timestamp always advances.

    Returns:
        Tuple of (new_record, should_notify)
    """
    checked = replace(record, last_outage_check_time=now)
    if not summary.usable:
        return checked, False

    power_present = not normalize_bool(summary.inferred_off)
    if power_present == normalize_bool(record.light_state):
        return checked, False

    return apply_transition(checked, power_present, now), True


def outage_check_due(record: SubscriberRecord, now: float, interval: float) -> bool:
    """True when the per-subscriber outage throttle has elapsed."""
    if record.last_outage_check_time is None:
        return True
    return now - record.last_outage_check_time >= interval


def format_state_summary(record: SubscriberRecord, now: float) -> str:
    """
    Format state for human-readable logging.

    Args:
        record: Subscriber record
        now: Current epoch seconds

    Returns:
        Formatted string
    """
    state = "ON" if normalize_bool(record.light_state) else "OFF"
    held = (
        format_duration(now - record.state_start_time)
        if record.state_start_time is not None
        else "unknown"
    )
    return (
        f"Subscriber: {record.subscriber_id}, Light: {state}, Held: {held}, "
        f"Mode: {classify_mode(record).value}"
    )
