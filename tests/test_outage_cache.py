"""
Tests for the outage summary cache and the DTEK client response parsing.
"""

import pytest

from power_watch.models import StreetOutageData
from power_watch.outage_client import OutageSourceClient, OutageSourceError

OFF_DATA = StreetOutageData(
    houses={"12": {"sub_type": "planned", "start_date": "10:00 01.01.2025", "end_date": "14:00 01.01.2025"}}
)


class TestOutageSummaryCache:
    def test_cached_within_window(self, outage_cache, outage_source, clock):
        outage_source.responses[("Одеса", "Дерибасівська")] = OFF_DATA
        first = outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        clock.advance(899)
        second = outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        assert first is second
        assert len(outage_source.calls) == 1

    def test_refetch_after_window(self, outage_cache, outage_source, clock):
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        clock.advance(900)
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        assert len(outage_source.calls) == 2

    def test_whole_street_is_a_distinct_key(self, outage_cache, outage_source):
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "")
        assert outage_source.calls == [
            ("Одеса", "Дерибасівська", "12"),
            ("Одеса", "Дерибасівська", ""),
        ]

    def test_failure_is_neutral(self, outage_cache, outage_source, source_failure):
        outage_source.error = source_failure
        summary = outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        assert summary.inferred_off is False
        assert summary.fetch_failed is True
        assert summary.usable is False

    def test_failure_is_cached(self, outage_cache, outage_source, source_failure):
        outage_source.error = source_failure
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        assert len(outage_source.calls) == 1

    def test_failure_reuses_previous_summary_as_stale(self, outage_cache, outage_source, clock, source_failure):
        outage_source.responses[("Одеса", "Дерибасівська")] = OFF_DATA
        good = outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        clock.advance(1000)
        outage_source.error = source_failure
        reused = outage_cache.get_or_fetch("Одеса", "Дерибасівська", "12")
        assert reused.inferred_off is good.inferred_off
        assert reused.message == good.message
        assert reused.stale is True
        assert reused.usable is False


class TestParseResponse:
    def test_parses_dtek_body(self):
        body = {
            "result": True,
            "data": {"12": {"sub_type": "planned"}, "14": {"sub_type": ""}},
            "showCurOutageParam": True,
            "updateTimestamp": "14:20 01.01.2025",
        }
        data = OutageSourceClient.parse_response(body)
        assert set(data.houses) == {"12", "14"}
        assert data.street_flag is True
        assert data.update_timestamp == "14:20 01.01.2025"

    @pytest.mark.parametrize(
        "body",
        [None, [], {"result": False}, {"result": True, "data": ["not", "a", "map"]}],
    )
    def test_rejects_unusable_bodies(self, body):
        with pytest.raises(OutageSourceError):
            OutageSourceClient.parse_response(body)

    def test_form_fields(self):
        form = OutageSourceClient.build_form("Одеса", "Дерибасівська", "12")
        assert form["method"] == "getHomeNum"
        assert form["data[2][name]"] == "home_num"
        assert form["data[2][value]"] == "12"
