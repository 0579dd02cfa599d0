"""
Shared fixtures: in-memory fakes for DynamoDB, Telegram and the outage source.
"""

import copy
from zoneinfo import ZoneInfo

import pytest

from power_watch.config_loader import Timings
from power_watch.dispatcher import NotificationDispatcher
from power_watch.models import StreetOutageData
from power_watch.notifier import TelegramError
from power_watch.outage_cache import OutageSummaryCache
from power_watch.outage_client import OutageSourceError
from power_watch.reconciler import StateReconciler
from power_watch.state_store import SubscriberStore

# 2025-01-01 10:00:00 Europe/Kyiv
T0 = 1735718400.0
KYIV = ZoneInfo("Europe/Kyiv")


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTable:
    """Enough of a boto3 DynamoDB Table for SubscriberStore."""

    def __init__(self):
        self.items = {}
        self.updates = []
        self.get_calls = 0
        self.consistent_reads = 0
        self.scan_calls = 0
        self.fail_get = None

    def get_item(self, Key, ConsistentRead=False):
        self.get_calls += 1
        if ConsistentRead:
            self.consistent_reads += 1
        if self.fail_get is not None:
            raise self.fail_get
        item = self.items.get(Key["pk"])
        return {"Item": copy.deepcopy(item)} if item is not None else {}

    def scan(self, **kwargs):
        self.scan_calls += 1
        return {"Items": [copy.deepcopy(item) for item in self.items.values()]}

    def update_item(self, Key, UpdateExpression, ExpressionAttributeNames, ExpressionAttributeValues):
        pk = Key["pk"]
        item = self.items.setdefault(pk, {"pk": pk})
        assert UpdateExpression.startswith("SET ")
        changed = {}
        for assignment in UpdateExpression[len("SET "):].split(", "):
            name_ph, value_ph = assignment.split(" = ")
            name = ExpressionAttributeNames[name_ph]
            item[name] = copy.deepcopy(ExpressionAttributeValues[value_ph])
            changed[name] = item[name]
        self.updates.append((pk, changed))


class FakeNotifier:
    """Records Telegram calls instead of making them."""

    def __init__(self):
        self.sent = []
        self.edits = []
        self.pins = []
        self.next_id = 100
        self.send_error = None
        self.edit_error = None
        self.pin_error = None

    def send_message(self, chat_id, text):
        if self.send_error is not None:
            raise self.send_error
        self.next_id += 1
        self.sent.append((chat_id, text, self.next_id))
        return self.next_id

    def edit_message(self, chat_id, message_id, text):
        if self.edit_error is not None:
            raise self.edit_error
        self.edits.append((chat_id, message_id, text))

    def pin_message(self, chat_id, message_id):
        if self.pin_error is not None:
            raise self.pin_error
        self.pins.append((chat_id, message_id))

    def texts_for(self, chat_id):
        return [text for cid, text, _ in self.sent if cid == chat_id]


class FakeOutageSource:
    """fetch(city, street, house) returning canned StreetOutageData."""

    def __init__(self):
        self.responses = {}
        self.calls = []
        self.error = None

    def __call__(self, city, street, house):
        self.calls.append((city, street, house))
        if self.error is not None:
            raise self.error
        return self.responses.get((city, street), StreetOutageData())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timings():
    return Timings(send_batch_pause=0)


@pytest.fixture
def table():
    return FakeTable()


@pytest.fixture
def store(table, clock):
    return SubscriberStore("test-table", cache_ttl=15, table=table, clock=clock)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def dispatcher(notifier, clock, timings):
    d = NotificationDispatcher(
        notifier,
        batch_size=timings.send_batch_size,
        batch_pause=0,
        dedup_window=timings.dedup_window,
        pinned_refresh_interval=timings.pinned_refresh_interval,
        call_timeout=5,
        clock=clock,
        sleep=lambda seconds: None,
    )
    yield d
    d.shutdown()


@pytest.fixture
def outage_source():
    return FakeOutageSource()


@pytest.fixture
def outage_cache(outage_source, clock, timings):
    return OutageSummaryCache(outage_source, ttl=timings.outage_cache_ttl, clock=clock)


@pytest.fixture
def reconciler(store, outage_cache, dispatcher, timings, clock):
    return StateReconciler(store, outage_cache, dispatcher, timings, KYIV, clock=clock, monotonic=clock)


@pytest.fixture
def source_failure():
    return OutageSourceError("Outage source request failed: timed out")


@pytest.fixture
def telegram_failure():
    return TelegramError("Telegram API error: Bad Gateway", 502)
