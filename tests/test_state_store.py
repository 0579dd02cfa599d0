"""
Tests for the DynamoDB subscriber store (backed by an in-memory table).
"""

from datetime import datetime
from decimal import Decimal

import pytest

from conftest import KYIV, T0
from power_watch.models import Address, SubscriberRecord
from power_watch.state_store import SubscriberStore


class PagedTable:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def scan(self, **kwargs):
        self.calls.append(kwargs)
        index = kwargs.get("ExclusiveStartKey", {}).get("page", 0)
        response = {"Items": self.pages[index]}
        if index + 1 < len(self.pages):
            response["LastEvaluatedKey"] = {"page": index + 1}
        return response


class TestReadWrite:
    def test_unknown_subscriber(self, store):
        assert store.get("42") is None

    def test_save_and_get(self, store, table):
        record = SubscriberRecord(
            subscriber_id="42",
            last_liveness_time=T0 + 0.5,
            light_state=True,
            state_start_time=T0,
            previous_duration="00:03:01",
            pinned_message_ref=101,
            address=Address("Одеса", "Дерибасівська", "12"),
        )
        store.save(record)

        assert table.items["42"]["last_liveness_time"] == Decimal(str(T0 + 0.5))
        assert store.get("42") == record

    def test_upsert_touches_only_given_fields(self, store, table):
        store.save(SubscriberRecord(subscriber_id="42", light_state=True, previous_duration="00:01:00"))
        store.upsert("42", {"light_state": False})
        record = store.get("42")
        assert record.light_state is False
        assert record.previous_duration == "00:01:00"

    def test_empty_upsert_is_noop(self, store, table):
        store.upsert("42", {})
        assert table.updates == []

    def test_legacy_values_are_normalized(self, store, table):
        table.items["42"] = {
            "pk": "42",
            "light_state": "FALSE",
            "state_start_time": "01.11.2025 02:44:01",
            "last_liveness_time": "",
            "pinned_message_ref": Decimal("17"),
            "suppressed": "TRUE",
        }
        record = store.get("42")
        assert record.light_state is False
        assert record.suppressed is True
        assert record.last_liveness_time is None
        assert record.pinned_message_ref == 17
        assert record.state_start_time == datetime(2025, 11, 1, 2, 44, 1, tzinfo=KYIV).timestamp()

    def test_get_failure_is_raised(self, store, table):
        table.fail_get = RuntimeError("dynamodb unavailable")
        with pytest.raises(RuntimeError):
            store.get("42")


class TestReadCache:
    def test_reads_are_cached(self, store, table):
        store.save(SubscriberRecord(subscriber_id="42"))
        store.get("42")
        store.get("42")
        assert table.get_calls == 1

    def test_cache_expires(self, store, table, clock):
        store.save(SubscriberRecord(subscriber_id="42"))
        store.get("42")
        clock.advance(15)
        store.get("42")
        assert table.get_calls == 2

    def test_write_invalidates(self, store, table):
        store.save(SubscriberRecord(subscriber_id="42"))
        store.get("42")
        store.get_all()
        store.upsert("42", {"light_state": True})
        assert store.get("42").light_state is True
        assert store.get_all()[0].light_state is True
        assert table.get_calls == 2
        assert table.scan_calls == 2

    def test_cached_records_are_copies(self, store):
        store.save(SubscriberRecord(subscriber_id="42"))
        store.get("42").light_state = True
        assert store.get("42").light_state is False

    def test_fresh_read_skips_cache(self, store, table):
        store.save(SubscriberRecord(subscriber_id="42"))
        store.get("42")
        table.items["42"]["light_state"] = True

        assert store.get("42").light_state is False
        assert store.get("42", fresh=True).light_state is True
        assert table.get_calls == 2
        assert table.consistent_reads == 1

    def test_fresh_read_refreshes_cache(self, store, table):
        store.save(SubscriberRecord(subscriber_id="42"))
        table.items["42"]["light_state"] = True
        store.get("42", fresh=True)
        assert store.get("42").light_state is True
        assert table.get_calls == 1


class TestScan:
    def test_paginated_scan(self, clock):
        table = PagedTable([[{"pk": "1"}, {"pk": "2"}], [{"pk": "3", "light_state": True}]])
        store = SubscriberStore("t", table=table, clock=clock)
        records = store.get_all()
        assert [r.subscriber_id for r in records] == ["1", "2", "3"]
        assert records[2].light_state is True
        assert len(table.calls) == 2
