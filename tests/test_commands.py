"""
Tests for subscriber commands delivered through the bot webhook.
"""

import pytest

from conftest import KYIV, T0
from power_watch.commands import ADDRESS_USAGE, HELP_TEXT, SubscriberCommands
from power_watch.messages import APOLOGY
from power_watch.models import Address, Mode, SubscriberRecord
from power_watch.text_search import search


@pytest.fixture
def commands(store, reconciler, dispatcher, clock):
    return SubscriberCommands(store, reconciler, dispatcher, KYIV, cities=["Одеса", "Київ"], clock=clock)


def update(text, chat_id=42):
    return {"update_id": 1, "message": {"message_id": 5, "chat": {"id": chat_id}, "text": text}}


class TestAddress:
    def test_new_subscriber(self, commands, store, notifier):
        reply = commands.handle_update(update("/address Одеса, Дерибасівська, 12"))

        assert reply == "📍 Адресу збережено: Одеса, Дерибасівська, 12"
        assert notifier.texts_for("42") == [reply]
        record = store.get("42")
        assert record.address == Address("Одеса", "Дерибасівська", "12")
        assert record.light_state is True
        assert record.state_start_time == T0
        assert record.mode is Mode.OUTAGE_ONLY

    def test_whole_street(self, commands, store):
        commands.handle_update(update("/address Одеса, Дерибасівська"))
        assert store.get("42").address == Address("Одеса", "Дерибасівська", "")

    def test_existing_subscriber_resets_outage_throttle(self, commands, store):
        store.save(
            SubscriberRecord(
                subscriber_id="42",
                light_state=False,
                state_start_time=T0 - 60,
                last_liveness_time=T0 - 60,
                last_outage_check_time=T0,
            )
        )
        commands.save_address("42", "Одеса", "Рішельєвська", "3")

        record = store.get("42")
        assert record.last_outage_check_time is None
        assert record.light_state is False
        assert record.address.street == "Рішельєвська"

    def test_city_is_normalized(self, commands, store):
        commands.handle_update(update("/address одеса, Дерибасівська, 12"))
        assert store.get("42").address.city == "Одеса"

    def test_usage_on_bad_input(self, commands, store):
        assert commands.handle_update(update("/address Одеса")) == ADDRESS_USAGE
        assert store.get("42") is None

    def test_save_address_requires_city_and_street(self, commands):
        with pytest.raises(ValueError):
            commands.save_address("42", "Одеса", " ")

    def test_reply_is_escaped(self, commands):
        reply = commands.handle_update(update("/address Одеса, <b>Вулиця</b>"))
        assert "&lt;b&gt;" in reply


class TestSubscription:
    def test_stop_and_start(self, commands, store):
        commands.handle_update(update("/stop"))
        assert store.get("42").suppressed is True
        commands.handle_update(update("/start"))
        assert store.get("42").suppressed is False

    def test_help_with_bot_mention(self, commands):
        assert commands.handle_update(update("/help@power_watch_bot")) == HELP_TEXT

    def test_repeated_command_is_answered(self, commands, notifier):
        commands.handle_update(update("/help"))
        commands.handle_update(update("/help"))
        assert notifier.texts_for("42") == [HELP_TEXT, HELP_TEXT]

    def test_first_ping_after_start_is_a_greeting(self, commands, reconciler, notifier, clock):
        commands.handle_update(update("/start"))
        clock.advance(30)
        reconciler.handle_ping("42")
        texts = notifier.texts_for("42")
        assert texts[1].startswith("👋")
        assert not any(text.startswith("✅") for text in texts)


class TestStatusAndOutage:
    def test_status_without_record(self, commands):
        assert commands.handle_update(update("/status")).startswith("Даних")

    def test_status_with_record(self, commands, store):
        store.save(SubscriberRecord(subscriber_id="42", last_liveness_time=T0, light_state=True, state_start_time=T0))
        reply = commands.handle_update(update("/status"))
        assert "Світло є" in reply

    def test_outage_requires_address(self, commands):
        assert commands.handle_update(update("/outage")).startswith("Спочатку")

    def test_outage_summary(self, commands, store, outage_source):
        commands.save_address("42", "Одеса", "Дерибасівська", "12")
        reply = commands.handle_update(update("/outage"))
        assert "відключень немає" in reply
        assert outage_source.calls == [("Одеса", "Дерибасівська", "12")]


class TestUpdateHandling:
    def test_handler_failure_sends_apology(self, commands, table, notifier):
        table.fail_get = RuntimeError("dynamodb unavailable")
        assert commands.handle_update(update("/status")) == APOLOGY
        assert notifier.texts_for("42") == [APOLOGY]

    @pytest.mark.parametrize(
        "payload",
        [
            update("hello"),
            update("/unknown"),
            {"update_id": 1, "callback_query": {"id": "x"}},
            {"update_id": 1, "message": {"text": "/status"}},
        ],
    )
    def test_ignored_updates(self, commands, notifier, payload):
        assert commands.handle_update(payload) is None
        assert notifier.sent == []


class TestSearch:
    def test_ranking(self):
        results = search("одеса", ["Київ", "Одеса", "Одеська область"])
        assert results[0] == ("Одеса", 1.0)
        assert "Київ" not in [name for name, _ in results]

    def test_substring(self):
        assert search("Одес", ["Одеса"]) == [("Одеса", 0.9)]

    def test_no_match(self):
        assert search("Львів", ["Одеса", "Київ"]) == []

    def test_empty_query(self):
        assert search("  ", ["Одеса"]) == []
