"""
Interpret a DTEK per-street outage response for one subscriber address.

Decision order (first match wins):
1. The subscriber's own house record carries an outage type -> power is off.
2. The source flags an outage on the street -> aggregate the active house
   records into a street-level summary (the flag alone is not trusted).
3. Nothing actionable -> no outage at this address.
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from power_watch.models import OutageSummary, StreetOutageData

DTEK_DATE_FORMAT = "%H:%M %d.%m.%Y"

ACTIVE_FIELDS = ("sub_type", "type", "start_date", "end_date")

_LEADING_NUMBER = re.compile(r"^\s*(\d+)")
_SEPARATORS = re.compile(r"[\s\-/\\.,]+")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _normalize_house(value: str) -> str:
    return _SEPARATORS.sub("", value).casefold()


def _leading_number(value: str) -> Optional[int]:
    match = _LEADING_NUMBER.match(value)
    return int(match.group(1)) if match else None


def resolve_house_key(
    house: str,
    keys: Iterable[str],
    aliases: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Find the source key matching a stored house number.

    Priority: source alias, exact match, case/separator-insensitive match,
    closest leading number, first key.
    """
    house = _text(house)
    keys = list(keys)
    if not house or not keys:
        return None

    if aliases:
        target = aliases.get(house)
        if target in keys:
            return target

    if house in keys:
        return house

    normalized = _normalize_house(house)
    for key in keys:
        if _normalize_house(key) == normalized:
            return key

    number = _leading_number(house)
    if number is not None:
        best_key = None
        best_distance = None
        for key in keys:
            key_number = _leading_number(key)
            if key_number is None:
                continue
            distance = abs(key_number - number)
            if best_distance is None or distance < best_distance:
                best_key, best_distance = key, distance
        if best_key is not None:
            return best_key

    return keys[0]


def outage_type(record: Dict[str, Any]) -> str:
    return _text(record.get("sub_type")) or _text(record.get("type"))


def is_active_entry(record: Dict[str, Any]) -> bool:
    """A house record describes an outage when any outage field is filled in."""
    return any(_text(record.get(name)) for name in ACTIVE_FIELDS)


def reasons_of(record: Dict[str, Any]) -> List[str]:
    raw = record.get("sub_type_reason")
    if not raw:
        return []
    if isinstance(raw, str):
        raw = [raw]
    return [_text(r) for r in raw if _text(r)]


def _parse_dtek_date(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, DTEK_DATE_FORMAT)
    except ValueError:
        return None


def _pick_date(values: List[str], latest: bool) -> str:
    """Earliest (or latest) parseable date string; raw first value if none parse."""
    values = [v for v in values if v]
    if not values:
        return ""
    parsed = []
    for value in values:
        date = _parse_dtek_date(value)
        if date is not None:
            parsed.append((date, value))
    if not parsed:
        return values[0]
    chosen = max(parsed, key=lambda pair: pair[0]) if latest else min(parsed, key=lambda pair: pair[0])
    return chosen[1]


def _updated_line(update_timestamp: Optional[str]) -> str:
    return f"\n<i>Оновлено: {update_timestamp}</i>" if update_timestamp else ""


def render_house_outage(record: Dict[str, Any], update_timestamp: Optional[str]) -> str:
    lines = ["🔴 <b>Відключення за вашою адресою</b>", outage_type(record)]
    start = _text(record.get("start_date"))
    end = _text(record.get("end_date"))
    if start:
        lines.append(f"🕐 Початок: {start}")
    if end:
        lines.append(f"🕑 Орієнтовне відновлення: {end}")
    reasons = reasons_of(record)
    if reasons:
        lines.append(f"Причина: {', '.join(reasons)}")
    return "\n".join(lines) + _updated_line(update_timestamp)


def render_street_outage(
    reasons: List[str], start: str, end: str, update_timestamp: Optional[str]
) -> str:
    lines = [
        "🟠 <b>Відключення на вулиці</b>",
        "<i>Дані по вулиці в цілому, не по вашому будинку</i>",
    ]
    if start:
        lines.append(f"🕐 Початок: {start}")
    if end:
        lines.append(f"🕑 Орієнтовне відновлення: {end}")
    if reasons:
        lines.append(f"Причина: {', '.join(reasons)}")
    return "\n".join(lines) + _updated_line(update_timestamp)


def render_no_outage(update_timestamp: Optional[str]) -> str:
    return "✅ За вашою адресою відключень немає" + _updated_line(update_timestamp)


def interpret(data: StreetOutageData, house: str) -> OutageSummary:
    """
    Decide whether the subscriber's house is without power.

    Args:
        data: Per-street response from the outage source
        house: Stored house number; empty means the whole street

    Returns:
        OutageSummary with a rendered message
    """
    freshness = data.update_timestamp

    # Tier 1: the house itself
    key = resolve_house_key(house, data.houses.keys(), data.aliases)
    if key is not None:
        record = data.houses.get(key) or {}
        if outage_type(record):
            return OutageSummary(
                inferred_off=True,
                message=render_house_outage(record, freshness),
                source_update_timestamp=freshness,
            )

    # Tier 2: street-level aggregate, only backed by actual entries
    if data.street_flag:
        active = [r for r in data.houses.values() if isinstance(r, dict) and is_active_entry(r)]
        if active:
            reasons: List[str] = []
            for record in active:
                for reason in reasons_of(record):
                    if reason not in reasons:
                        reasons.append(reason)
            start = _pick_date([_text(r.get("start_date")) for r in active], latest=False)
            end = _pick_date([_text(r.get("end_date")) for r in active], latest=True)
            return OutageSummary(
                inferred_off=True,
                message=render_street_outage(reasons, start, end, freshness),
                source_update_timestamp=freshness,
                street_level=True,
            )

    # Tier 3: no data means no outage
    return OutageSummary(
        inferred_off=False,
        message=render_no_outage(freshness),
        source_update_timestamp=freshness,
    )
