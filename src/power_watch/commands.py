"""
Subscriber-facing Telegram commands.

Exposes the core API consumed by conversational front-ends
(get_record / save_address / set_suppressed) and handles the plain commands
delivered through the bot webhook.
"""

import html
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from power_watch.dispatcher import NotificationDispatcher
from power_watch.log import log_error, log_event
from power_watch.logic import classify_mode
from power_watch.messages import APOLOGY, status_message
from power_watch.models import Address, SubscriberRecord
from power_watch.reconciler import StateReconciler
from power_watch.state_store import SubscriberStore
from power_watch.text_search import search

HELP_TEXT = (
    "Команди:\n"
    "/status — поточний стан світла\n"
    "/outage — дані ДТЕК за вашою адресою\n"
    "/address Місто, Вулиця, Будинок — вказати адресу\n"
    "/stop — вимкнути сповіщення\n"
    "/start — увімкнути сповіщення"
)

ADDRESS_USAGE = "Формат: /address Місто, Вулиця, Будинок (будинок можна не вказувати)"

Searcher = Callable[[str, Iterable[str]], List[Tuple[str, float]]]


class SubscriberCommands:
    """Command handlers plus the record API used by the address wizard."""

    def __init__(
        self,
        store: SubscriberStore,
        reconciler: StateReconciler,
        dispatcher: NotificationDispatcher,
        timezone: ZoneInfo,
        cities: Optional[List[str]] = None,
        searcher: Searcher = search,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.reconciler = reconciler
        self.dispatcher = dispatcher
        self.timezone = timezone
        self.cities = cities or []
        self.searcher = searcher
        self._clock = clock
        self._handlers: Dict[str, Callable[[str, str], str]] = {
            "/start": self._cmd_start,
            "/stop": self._cmd_stop,
            "/status": self._cmd_status,
            "/outage": self._cmd_outage,
            "/address": self._cmd_address,
            "/help": lambda chat_id, args: HELP_TEXT,
        }

    # ---------------------------------------------------------------- core API

    def get_record(self, subscriber_id: str) -> Optional[SubscriberRecord]:
        return self.store.get(str(subscriber_id))

    def save_address(self, subscriber_id: str, city: str, street: str, house: str = "") -> SubscriberRecord:
        """
        Store the subscriber's address.

        Creates the record on first contact (light assumed on until the outage
        source says otherwise). Resets the outage throttle so the next pass
        checks the new address immediately.

        Raises:
            ValueError: If city or street is empty
        """
        subscriber_id = str(subscriber_id)
        address = Address(self.normalize_city(city.strip()), street.strip(), house.strip())
        if not address.is_complete:
            raise ValueError("city and street are required")

        record = self.store.get(subscriber_id)
        if record is None:
            now = self._clock()
            new_record = SubscriberRecord(
                subscriber_id=subscriber_id,
                light_state=True,
                state_start_time=now,
                address=address,
            )
            fields = new_record.to_item()
            fields["mode"] = classify_mode(new_record).value
        else:
            fields = {"address": asdict(address), "last_outage_check_time": None}

        self.store.upsert(subscriber_id, fields)
        log_event("address_saved", subscriber_id=subscriber_id, address=address.display())
        saved = self.store.get(subscriber_id)
        if saved is None:
            raise RuntimeError(f"subscriber {subscriber_id} missing after address write")
        return saved

    def set_suppressed(self, subscriber_id: str, suppressed: bool) -> None:
        self.store.upsert(str(subscriber_id), {"suppressed": bool(suppressed)})
        log_event("subscriber_suppressed" if suppressed else "subscriber_resumed", subscriber_id=subscriber_id)

    def normalize_city(self, city: str) -> str:
        """Snap a typed city name to the closest known one, if a list is configured."""
        if not self.cities or not city:
            return city
        matches = self.searcher(city, self.cities)
        return matches[0][0] if matches else city

    # ---------------------------------------------------------------- webhook

    def handle_update(self, update: Dict[str, Any]) -> Optional[str]:
        """
        Handle one Telegram Update.

        Returns:
            The reply text sent, or None if the update was not a known command
        """
        message = update.get("message") or update.get("edited_message") or {}
        text = (message.get("text") or "").strip()
        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None or not text.startswith("/"):
            return None

        command, _, args = text.partition(" ")
        command = command.split("@", 1)[0].lower()
        handler = self._handlers.get(command)
        if handler is None:
            return None

        chat_id = str(chat_id)
        log_event("command_received", chat_id=chat_id, command=command)
        try:
            reply = handler(chat_id, args.strip())
        except Exception as e:
            log_error("command_failed", e, chat_id=chat_id, command=command)
            reply = APOLOGY

        self.dispatcher.send(chat_id, reply, dedup=False)
        return reply

    def _cmd_start(self, chat_id: str, args: str) -> str:
        self.set_suppressed(chat_id, False)
        return f"👋 Вітаю! Сповіщення увімкнено.\n\n{HELP_TEXT}"

    def _cmd_stop(self, chat_id: str, args: str) -> str:
        self.set_suppressed(chat_id, True)
        return "🔕 Сповіщення вимкнено. /start — увімкнути знову."

    def _cmd_status(self, chat_id: str, args: str) -> str:
        record = self.get_record(chat_id)
        if record is None:
            return "Даних для цього чату ще немає.\n\n" + HELP_TEXT
        return status_message(record, self._clock(), self.timezone, classify_mode(record))

    def _cmd_outage(self, chat_id: str, args: str) -> str:
        record = self.get_record(chat_id)
        summary = self.reconciler.outage_summary_for(record) if record else None
        if summary is None:
            return "Спочатку вкажіть адресу.\n" + ADDRESS_USAGE
        return summary.message

    def _cmd_address(self, chat_id: str, args: str) -> str:
        parts = [p.strip() for p in args.split(",")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            return ADDRESS_USAGE
        house = parts[2] if len(parts) > 2 else ""
        record = self.save_address(chat_id, parts[0], parts[1], house)
        address = record.address.display() if record.address else args
        return f"📍 Адресу збережено: {html.escape(address)}"
