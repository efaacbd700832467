"""
Tests for the availability decision cascade.
"""
import json

import pytest

from hub_engines.services.availability import (
    AvailabilityReason,
    build_block_response,
    decide_availability,
    evaluate_hub,
    same_day_intervals,
)

from conftest import MONDAY_NOON, chicago_monday


class TestConcreteScenario:

    def test_chicago_monday_noon_is_available(self, db, make_hub):
        hub = make_hub()
        decision = decide_availability(db, hub.id, MONDAY_NOON)

        assert decision.can_order is True
        assert decision.reason == AvailabilityReason.AVAILABLE
        assert decision.to_dict()["reason"] == "AVAILABLE"

    def test_decision_has_exactly_six_keys(self, db, make_hub):
        hub = make_hub()
        data = decide_availability(db, hub.id, MONDAY_NOON).to_dict()
        assert set(data) == {"can_order", "reason", "message", "reopen_at", "source", "severity"}


class TestClosingSoonBoundary:
    """09:00-17:00 with a 15 minute cutoff."""

    @pytest.mark.parametrize("hour,minute,reason", [
        (8, 59, AvailabilityReason.HUB_OUTSIDE_HOURS),
        (9, 0, AvailabilityReason.AVAILABLE),
        (16, 44, AvailabilityReason.AVAILABLE),
        (16, 45, AvailabilityReason.HUB_CLOSING_SOON),
        (16, 59, AvailabilityReason.HUB_CLOSING_SOON),
        (17, 0, AvailabilityReason.HUB_OUTSIDE_HOURS),
    ])
    def test_boundaries(self, db, make_hub, hour, minute, reason):
        hub = make_hub()
        assert decide_availability(db, hub.id, chicago_monday(hour, minute)).reason == reason

    def test_seconds_are_ignored(self, db, make_hub):
        hub = make_hub()
        now = chicago_monday(16, 44).replace(second=59)
        assert decide_availability(db, hub.id, now).reason == AvailabilityReason.AVAILABLE


class TestCascadeOrdering:
    """When several checks fail, the earliest one in the cascade wins."""

    def test_city_not_operational_beats_everything(self, db, make_city, make_hub):
        city = make_city(status="inactive", is_operational=False)
        hub = make_hub(city_id=city.id, status="inactive", hours_monday=None)
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.CITY_NOT_OPERATIONAL

    def test_city_inactive_beats_hub_inactive(self, db, make_city, make_hub):
        city = make_city(status="inactive")
        hub = make_hub(city_id=city.id, status="inactive")
        decision = decide_availability(db, hub.id, MONDAY_NOON)
        assert decision.reason == AvailabilityReason.CITY_INACTIVE
        assert decision.source == "city"

    def test_hub_inactive_beats_closure(self, db, make_hub):
        hub = make_hub(status="inactive", closure_reason="Renovation")
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_INACTIVE

    def test_indefinite_closure_beats_hours(self, db, make_hub):
        hub = make_hub(closure_reason="Renovation", hours_monday=None)
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_CLOSED_INDEFINITELY

    def test_temp_closure_beats_hours(self, db, make_hub):
        hub = make_hub(closure_until="2024-01-15 14:00:00", hours_monday=None)
        decision = decide_availability(db, hub.id, MONDAY_NOON)
        assert decision.reason == AvailabilityReason.HUB_TEMP_CLOSED
        assert decision.reopen_at == "2024-01-15T14:00:00-06:00"

    def test_expired_closure_falls_through_to_hours(self, db, make_hub):
        hub = make_hub(closure_until="2024-01-15 11:00:00", closure_reason="Late delivery")
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.AVAILABLE

    def test_utc_closure_until(self, db, make_hub):
        # 19:00 UTC is 13:00 in Chicago, still ahead of noon
        hub = make_hub(closure_until="2024-01-15T19:00:00Z")
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_TEMP_CLOSED


class TestHoursRules:

    def test_no_hours_today(self, db, make_hub):
        hub = make_hub(hours_monday=None)
        decision = decide_availability(db, hub.id, MONDAY_NOON)
        assert decision.reason == AvailabilityReason.HUB_NO_HOURS_SET
        assert decision.source == "hours"

    def test_overnight_interval_is_not_honored(self, db, make_hub):
        hub = make_hub(hours_monday=json.dumps([{"open": "20:00", "close": "02:00"}]))
        assert decide_availability(db, hub.id, chicago_monday(1, 0)).reason == AvailabilityReason.HUB_NO_HOURS_SET

    def test_split_shift(self, db, make_hub):
        hub = make_hub(hours_monday=json.dumps([
            {"open": "09:00", "close": "11:00"},
            {"open": "13:00", "close": "17:00"},
        ]))
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_OUTSIDE_HOURS
        assert decide_availability(db, hub.id, chicago_monday(13, 30)).reason == AvailabilityReason.AVAILABLE

    def test_same_day_intervals_drops_non_increasing(self):
        hub = {"hours_monday": json.dumps([
            {"open": "09:00", "close": "09:00"},
            {"open": "22:00", "close": "02:00"},
            {"open": "10:00", "close": "12:30"},
        ])}
        assert same_day_intervals(hub, "monday") == [(600, 750)]

    def test_uses_hub_local_day(self, db, make_hub):
        # 02:00 UTC Tuesday is still Monday evening in Chicago
        hub = make_hub(
            hours_monday=json.dumps([{"open": "18:00", "close": "22:00"}]),
            hours_tuesday=None,
        )
        assert decide_availability(db, hub.id, chicago_monday(20, 0)).reason == AvailabilityReason.AVAILABLE


class TestConfigurationErrors:

    def test_missing_timezone(self, db, make_hub):
        hub = make_hub(timezone=None)
        decision = decide_availability(db, hub.id, MONDAY_NOON)
        assert decision.reason == AvailabilityReason.HUB_CONFIGURATION_ERROR
        assert decision.can_order is False

    def test_unknown_timezone(self, db, make_hub):
        hub = make_hub(timezone="Mars/Olympus_Mons")
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_CONFIGURATION_ERROR

    def test_unparseable_closure_until(self, db, make_hub):
        hub = make_hub(closure_until="soon")
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_CONFIGURATION_ERROR

    def test_hub_without_city(self, db, make_hub):
        hub = make_hub(city_id=None)
        assert decide_availability(db, hub.id, MONDAY_NOON).reason == AvailabilityReason.HUB_CONFIGURATION_ERROR

    @pytest.mark.parametrize("hub_id", [0, -3, None, "abc"])
    def test_invalid_hub_id(self, db, hub_id):
        assert decide_availability(db, hub_id, MONDAY_NOON).reason == AvailabilityReason.HUB_INACTIVE

    def test_unknown_hub(self, db):
        assert decide_availability(db, 999, MONDAY_NOON).reason == AvailabilityReason.HUB_INACTIVE

    def test_lookup_failure_fails_closed(self, db, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("database gone")

        monkeypatch.setattr(db, "query", boom)
        decision = decide_availability(db, 1, MONDAY_NOON)
        assert decision.reason == AvailabilityReason.HUB_CONFIGURATION_ERROR


class TestEvaluateHub:

    def test_missing_city_row(self, db, make_hub):
        hub = make_hub()
        assert evaluate_hub(hub, None, MONDAY_NOON).reason == AvailabilityReason.CITY_INACTIVE


class TestBlockResponse:

    def test_envelope(self, db, make_hub):
        hub = make_hub(status="inactive")
        decision = decide_availability(db, hub.id, MONDAY_NOON)
        body = build_block_response(decision)

        assert body["success"] is False
        assert body["error"] == "availability_block"
        assert body["can_order"] is False
        assert body["can_place_order"] is False
        assert body["reason"] == "HUB_INACTIVE"
        assert body["availability"] == decision.to_dict()

    def test_defaults_for_empty_decision(self):
        body = build_block_response({})
        assert body["reason"] == "UNKNOWN"
        assert body["message"] == "Restaurant unavailable"
