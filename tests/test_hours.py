"""
Tests for the hours display engine.
"""
import json

import pytest

from hub_engines.services.hours import (
    filter_open_hubs,
    format_interval,
    format_today,
    format_weekly,
    get_intervals,
    get_public_status,
    get_status,
    enrich_hub,
)

from conftest import MONDAY_NOON, NINE_TO_FIVE, chicago_monday


def hub_dict(**overrides):
    hub = {
        "status": "active",
        "timezone": "America/Chicago",
        "closure_until": None,
        "closure_reason": None,
        "hours_monday": NINE_TO_FIVE,
    }
    hub.update(overrides)
    return hub


class TestGetIntervals:

    def test_valid_intervals(self):
        hub = hub_dict(hours_monday=json.dumps([
            {"open": "09:00", "close": "14:00"},
            {"open": "17:00", "close": "22:00"},
        ]))
        assert get_intervals(hub, "monday") == [
            {"open": "09:00", "close": "14:00"},
            {"open": "17:00", "close": "22:00"},
        ]

    def test_bad_interval_dropped_rest_kept(self):
        hub = hub_dict(hours_monday=json.dumps([
            {"open": "25:00", "close": "14:00"},
            {"open": "17:00", "close": "22:00"},
            {"open": "9am"},
        ]))
        assert get_intervals(hub, "monday") == [{"open": "17:00", "close": "22:00"}]

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"open": "09:00"}'])
    def test_malformed_day_is_empty(self, raw):
        assert get_intervals(hub_dict(hours_monday=raw), "monday") == []


class TestFormatInterval:

    def test_twelve_hour(self):
        assert format_interval("09:00", "17:00") == "9:00 AM - 5:00 PM"

    def test_twenty_four_hour(self):
        assert format_interval("9:00", "17:30", style="24h") == "09:00 - 17:30"

    def test_mixed_drops_matching_suffix(self):
        assert format_interval("09:00", "11:30", style="mixed") == "9:00 - 11:30 AM"
        assert format_interval("11:00", "14:00", style="mixed") == "11:00 AM - 2:00 PM"

    def test_overnight_marker(self):
        assert format_interval("22:00", "02:00") == "10:00 PM - 2:00 AM +1"

    def test_midnight_and_noon(self):
        assert format_interval("00:00", "12:00") == "12:00 AM - 12:00 PM"


class TestGetStatus:
    """Informational status in the hub's timezone."""

    def test_open_monday_noon(self):
        status = get_status(hub_dict(), MONDAY_NOON)
        assert status["is_open"] is True
        assert status["status_text"] == "Open now"
        assert status["hours_today"] == "9:00 AM - 5:00 PM"
        assert status["next_change"] == "17:00"

    def test_closed_before_opening_reports_next_opening(self):
        status = get_status(hub_dict(), chicago_monday(8, 0))
        assert status["is_open"] is False
        assert status["status_text"] == "Closed"
        assert status["next_change"] == "09:00"

    def test_close_minute_is_closed(self):
        assert get_status(hub_dict(), chicago_monday(17, 0))["is_open"] is False

    def test_overnight_interval_open_after_midnight_side(self):
        hub = hub_dict(hours_monday=json.dumps([{"open": "20:00", "close": "02:00"}]))
        assert get_status(hub, chicago_monday(1, 30))["is_open"] is True
        assert get_status(hub, chicago_monday(12, 0))["is_open"] is False

    def test_inactive(self):
        status = get_status(hub_dict(status="inactive"), MONDAY_NOON)
        assert status["status_text"] == "Inactive"
        assert status["is_open"] is False

    def test_no_hours_today(self):
        status = get_status(hub_dict(hours_monday=None), MONDAY_NOON)
        assert status["hours_today"] == "Closed"
        assert status["is_open"] is False

    def test_future_closure(self):
        hub = hub_dict(closure_until="2024-01-16 09:00:00", closure_reason="Kitchen repairs")
        status = get_status(hub, MONDAY_NOON)
        assert status["is_temp_closed"] is True
        assert status["status_text"] == "Temporarily Closed"
        assert status["hours_today"] == "Kitchen repairs"
        assert status["closure_until"] == "2024-01-16T09:00:00-06:00"

    def test_past_closure_ignored(self):
        hub = hub_dict(closure_until="2024-01-14 09:00:00")
        status = get_status(hub, MONDAY_NOON)
        assert status["is_temp_closed"] is False
        assert status["is_open"] is True

    def test_unparseable_closure_is_indefinite(self):
        status = get_status(hub_dict(closure_until="next tuesday"), MONDAY_NOON)
        assert status["is_temp_closed"] is True
        assert status["hours_today"] == "Temporarily closed (indefinite)."

    def test_missing_timezone_uses_default(self):
        status = get_status(hub_dict(timezone=None), MONDAY_NOON)
        assert status["is_open"] is True


class TestDisplayHelpers:

    def test_format_today(self):
        assert format_today(hub_dict(), MONDAY_NOON) == "9:00 AM - 5:00 PM"
        assert format_today(hub_dict(hours_monday=None), MONDAY_NOON) == "Closed"

    def test_format_weekly(self):
        weekly = format_weekly(hub_dict())
        assert list(weekly)[0] == "monday"
        assert weekly["monday"]["is_open"] is True
        assert weekly["monday"]["day_short"] == "Mon"
        assert weekly["tuesday"]["hours"] == "Closed"

    def test_public_status_temp_closed(self):
        hub = hub_dict(closure_until="2024-01-16 09:00:00")
        status = get_public_status(hub, MONDAY_NOON)
        assert status["status"] == "Temp. Closed"
        assert status["status_class"] == "temp-closed"

    def test_enrich_hub_on_dict(self):
        hub = enrich_hub(hub_dict(), MONDAY_NOON)
        assert hub["is_open"] is True
        assert hub["status_text"] == "Open now"


class TestFilterOpenHubs:

    def test_keeps_only_open_hubs_in_input_order(self, db, make_hub):
        open_hub = make_hub()
        closed_hub = make_hub(hours_monday=None)
        inactive_hub = make_hub(status="inactive")
        second_open = make_hub()

        ids = [second_open.id, closed_hub.id, inactive_hub.id, open_hub.id]
        assert filter_open_hubs(db, ids, MONDAY_NOON) == [second_open.id, open_hub.id]
