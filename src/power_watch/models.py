"""
Data model: subscriber records, outage data and summaries.
Stored values are loosely typed (legacy rows hold "TRUE"/"FALSE" strings and
formatted dates), so everything is normalized on the way in.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from power_watch.log import log_event

DEFAULT_TIMEZONE = ZoneInfo("Europe/Kyiv")

# Legacy spreadsheet rows used "01.11.2025 02:44:01"
LEGACY_TIMESTAMP_FORMATS = ("%d.%m.%Y %H:%M:%S", "%d.%m.%Y %H:%M", "%H:%M %d.%m.%Y")

TRUE_STRINGS = {"true", "1", "yes", "on", "y"}


class Mode(str, Enum):
    """Which signal(s) govern a subscriber's light state."""

    NONE = "none"
    PING_ONLY = "ping_only"
    OUTAGE_ONLY = "outage_only"
    FULL = "full"

    @classmethod
    def parse(cls, value: Any) -> "Mode":
        try:
            return cls(str(value))
        except ValueError:
            return cls.NONE


def normalize_bool(value: Any) -> bool:
    """Normalize a stored boolean ("TRUE", "false", 1, Decimal("0"), None...)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    return str(value).strip().lower() in TRUE_STRINGS


def parse_timestamp(value: Any, tz: ZoneInfo = DEFAULT_TIMEZONE) -> Optional[float]:
    """
    Parse a stored timestamp into epoch seconds.

    Accepts numbers, numeric strings, ISO-8601 and the legacy "dd.mm.YYYY HH:MM:SS"
    format. Empty values yield None. Anything else falls back to "now" and is
    logged: a slightly wrong duration beats a stuck evaluation.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        log_event("timestamp_parse_failed", level="error", value=value)
        return time.time()
    if isinstance(value, (int, float, Decimal)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in LEGACY_TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        log_event("timestamp_parse_failed", level="error", value=text)
        return time.time()

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.timestamp()


@dataclass
class Address:
    """Subscriber address. An empty house_number means the whole street."""

    city: str = ""
    street: str = ""
    house_number: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.city.strip() and self.street.strip())

    @property
    def cache_key(self) -> tuple:
        return (self.city, self.street, self.house_number)

    def display(self) -> str:
        parts = [self.city, self.street]
        if self.house_number:
            parts.append(self.house_number)
        return ", ".join(p for p in parts if p)

    @classmethod
    def from_item(cls, item: Any) -> Optional["Address"]:
        if not isinstance(item, dict):
            return None
        address = cls(
            city=str(item.get("city") or "").strip(),
            street=str(item.get("street") or "").strip(),
            house_number=str(item.get("house_number") or "").strip(),
        )
        if not (address.city or address.street):
            return None
        return address


@dataclass
class SubscriberRecord:
    """
    Persisted per-subscriber state.

    Attributes:
        subscriber_id: Telegram chat id (as string)
        last_liveness_time: Epoch seconds of the last device ping, None if never pinged
        light_state: True when power is present
        state_start_time: Epoch seconds when the current light_state began
        previous_duration: "HH:MM:SS" length of the state before the current one
        pinned_message_ref: Telegram message id of the live status message
        address: Address used for outage lookups
        suppressed: Opt-out flag; suppressed subscribers are never evaluated
        mode: Last persisted classification (display only, always recomputed)
        last_outage_check_time: Epoch seconds of the last outage-source evaluation
    """

    subscriber_id: str
    last_liveness_time: Optional[float] = None
    light_state: bool = False
    state_start_time: Optional[float] = None
    previous_duration: str = ""
    pinned_message_ref: Optional[int] = None
    address: Optional[Address] = None
    suppressed: bool = False
    mode: Mode = Mode.NONE
    last_outage_check_time: Optional[float] = None

    def to_item(self) -> Dict[str, Any]:
        """Convert to a storable dictionary (without the subscriber id key)."""
        return {
            "last_liveness_time": self.last_liveness_time,
            "light_state": self.light_state,
            "state_start_time": self.state_start_time,
            "previous_duration": self.previous_duration,
            "pinned_message_ref": self.pinned_message_ref,
            "address": asdict(self.address) if self.address else None,
            "suppressed": self.suppressed,
            "mode": self.mode.value,
            "last_outage_check_time": self.last_outage_check_time,
        }

    @classmethod
    def from_item(cls, subscriber_id: str, item: Dict[str, Any]) -> "SubscriberRecord":
        pinned = item.get("pinned_message_ref")
        try:
            pinned_ref = int(pinned) if pinned not in (None, "") else None
        except (TypeError, ValueError):
            pinned_ref = None

        return cls(
            subscriber_id=str(subscriber_id),
            last_liveness_time=parse_timestamp(item.get("last_liveness_time")),
            light_state=normalize_bool(item.get("light_state")),
            state_start_time=parse_timestamp(item.get("state_start_time")),
            previous_duration=str(item.get("previous_duration") or ""),
            pinned_message_ref=pinned_ref,
            address=Address.from_item(item.get("address")),
            suppressed=normalize_bool(item.get("suppressed")),
            mode=Mode.parse(item.get("mode")),
            last_outage_check_time=parse_timestamp(item.get("last_outage_check_time")),
        )


@dataclass
class StreetOutageData:
    """
    Outage source response for one street.

    Attributes:
        houses: House key -> raw record (sub_type, type, start_date, end_date, sub_type_reason)
        street_flag: Source reports an active outage somewhere on the street
        update_timestamp: Source's own freshness marker, free text
        aliases: Optional alias -> house key resolution provided by the source
    """

    houses: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    street_flag: bool = False
    update_timestamp: Optional[str] = None
    aliases: Dict[str, str] = field(default_factory=dict)


@dataclass
class OutageSummary:
    """Interpreted outage information for one address."""

    inferred_off: bool
    message: str
    source_update_timestamp: Optional[str] = None
    fetch_failed: bool = False
    street_level: bool = False
    stale: bool = False

    @property
    def usable(self) -> bool:
        """Only fresh, successfully fetched summaries may drive a transition."""
        return not self.fetch_failed and not self.stale
