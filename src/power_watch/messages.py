"""
User-facing message texts (Ukrainian, Telegram HTML parse mode).
"""

import html
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from power_watch.models import Mode, SubscriberRecord, normalize_bool

MONTHS_UK = {
    1: "січня", 2: "лютого", 3: "березня", 4: "квітня",
    5: "травня", 6: "червня", 7: "липня", 8: "серпня",
    9: "вересня", 10: "жовтня", 11: "листопада", 12: "грудня",
}

MODE_LABELS = {
    Mode.NONE: "не налаштовано",
    Mode.PING_ONLY: "датчик",
    Mode.OUTAGE_ONLY: "графік ДТЕК",
    Mode.FULL: "датчик + графік ДТЕК",
}

APOLOGY = "😔 Вибачте, сталася помилка. Спробуйте, будь ласка, пізніше."


def format_timestamp(ts: float, tz: ZoneInfo) -> str:
    """Format epoch seconds as "5 січня 2025 о 14:03"."""
    dt = datetime.fromtimestamp(ts, tz)
    return f"{dt.day} {MONTHS_UK[dt.month]} {dt.year} о {dt.strftime('%H:%M')}"


def format_duration(seconds: float) -> str:
    """Format a duration as HH:MM:SS; hours are not wrapped at 24."""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def greeting_message(now: float, tz: ZoneInfo) -> str:
    return f"👋 Привіт! Світло є.\n\n🕐 {format_timestamp(now, tz)}"


def light_on_message(previous_duration: str, now: float, tz: ZoneInfo, details: str = "") -> str:
    text = f"✅ Світло з'явилося!\n\n⏱ Світла не було: {previous_duration}\n🕐 {format_timestamp(now, tz)}"
    if details:
        text += f"\n\n{details}"
    return text


def light_off_message(previous_duration: str, now: float, tz: ZoneInfo, details: str = "") -> str:
    text = f"❌ Світло зникло\n\n⏱ Світло було: {previous_duration}\n🕐 {format_timestamp(now, tz)}"
    if details:
        text += f"\n\n{details}"
    return text


def status_message(record: SubscriberRecord, now: float, tz: ZoneInfo, mode: Optional[Mode] = None) -> str:
    """Live status text (pinned message and /status reply)."""
    mode = mode or record.mode
    if mode == Mode.NONE:
        return (
            "ℹ️ Моніторинг не налаштовано.\n\n"
            "Підключіть датчик або вкажіть адресу: /address Місто, Вулиця, Будинок"
        )

    state = "💡 Світло є" if normalize_bool(record.light_state) else "🕯 Світла немає"
    lines = [f"<b>{state}</b>"]
    if record.state_start_time is not None:
        current = format_duration(now - record.state_start_time)
        lines.append(f"⏱ Вже {current} (з {format_timestamp(record.state_start_time, tz)})")
    if record.previous_duration:
        lines.append(f"↩️ Попередній стан тривав {record.previous_duration}")
    if record.address:
        lines.append(f"📍 {html.escape(record.address.display())}")
    lines.append(f"📡 Джерело: {MODE_LABELS[mode]}")
    lines.append(f"\n<i>Оновлено: {format_timestamp(now, tz)}</i>")
    return "\n".join(lines)
