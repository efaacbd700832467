"""
Availability Engine
===================

The single decision on whether a hub accepts orders right now. Checkout and
order creation call ``decide_availability`` and refuse to proceed unless
``can_order`` is true.

Decision Cascade:
-----------------
Evaluated in this exact order; the first failing check wins.

1. CITY_NOT_OPERATIONAL     city.is_operational is false
2. CITY_INACTIVE            city.status != "active", or the city row is missing
3. HUB_INACTIVE             hub.status != "active", hub_id <= 0, or hub missing
4. HUB_CLOSED_INDEFINITELY  closure_reason set and closure_until empty
5. HUB_TEMP_CLOSED          now <= closure_until (reopen_at is closure_until)
6. HUB_NO_HOURS_SET         today has no valid same-day interval
7. HUB_OUTSIDE_HOURS        hub-local time is outside every interval
8. HUB_CLOSING_SOON         inside the cutoff window before the interval closes
9. AVAILABLE

A hub without a city, with a missing or unknown timezone, or with an
unparseable closure_until resolves to HUB_CONFIGURATION_ERROR.

Time Rules:
-----------
- Time is always hub-local, computed from the hub's IANA timezone. There is no
  fallback to server time.
- Only same-day intervals count. An interval whose close is not after its open
  is dropped as malformed instead of being read as overnight.
- Comparison is at minute resolution. A hub is open while
  ``open <= now < close`` and closing soon once ``now >= close - cutoff``.
  With 09:00-17:00 and a 15 minute cutoff: 16:44 AVAILABLE,
  16:45 HUB_CLOSING_SOON, 17:00 HUB_OUTSIDE_HOURS.

Result Shape:
-------------
``AvailabilityDecision.to_dict()`` has exactly six keys:

    {"can_order", "reason", "message", "reopen_at", "source", "severity"}

Only ``reason`` is a stable contract. ``message`` is a display hint.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import AVAILABILITY_CUTOFF_MINUTES
from ..models import City, Hub, WEEKDAYS
from .hours import (
    get_intervals,
    hub_now,
    parse_closure_until,
    resolve_timezone,
    time_to_minutes,
)

logger = logging.getLogger(__name__)


class AvailabilityReason(str, Enum):
    AVAILABLE = "AVAILABLE"
    CITY_NOT_OPERATIONAL = "CITY_NOT_OPERATIONAL"
    CITY_INACTIVE = "CITY_INACTIVE"
    HUB_INACTIVE = "HUB_INACTIVE"
    HUB_CLOSED_INDEFINITELY = "HUB_CLOSED_INDEFINITELY"
    HUB_TEMP_CLOSED = "HUB_TEMP_CLOSED"
    HUB_NO_HOURS_SET = "HUB_NO_HOURS_SET"
    HUB_OUTSIDE_HOURS = "HUB_OUTSIDE_HOURS"
    HUB_CLOSING_SOON = "HUB_CLOSING_SOON"
    HUB_CONFIGURATION_ERROR = "HUB_CONFIGURATION_ERROR"


MSG_HUB_UNAVAILABLE = "This restaurant is currently unavailable."
MSG_CITY_UNAVAILABLE = "This area is currently unavailable."
MSG_CITY_PAUSED = "Orders are temporarily paused in this city."
MSG_TEMP_CLOSED = "Temporarily closed."
MSG_NO_HOURS = "Hours not available today."
MSG_OUTSIDE_HOURS = "Closed now."
MSG_CLOSING_SOON = "This restaurant is closing soon and is no longer accepting orders."
MSG_AVAILABLE = "Available for orders."


@dataclass(frozen=True)
class AvailabilityDecision:
    can_order: bool
    reason: AvailabilityReason
    message: str
    reopen_at: Optional[str] = None
    source: str = "hub"  # city/hub/hours
    severity: str = "hard"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_order": self.can_order,
            "reason": self.reason.value,
            "message": self.message,
            "reopen_at": self.reopen_at,
            "source": self.source,
            "severity": self.severity,
        }


def _deny(reason: AvailabilityReason, message: str, source: str, reopen_at: Optional[str] = None) -> AvailabilityDecision:
    return AvailabilityDecision(
        can_order=False,
        reason=reason,
        message=message,
        reopen_at=reopen_at,
        source=source,
    )


def _configuration_error() -> AvailabilityDecision:
    return _deny(AvailabilityReason.HUB_CONFIGURATION_ERROR, MSG_HUB_UNAVAILABLE, "hub")


def same_day_intervals(hub: Any, day: str) -> List[Tuple[int, int]]:
    """
    (open, close) minute pairs for ``day`` usable for order gating.

    Uses the hours engine's parsing rules, then drops every interval whose
    close is not strictly after its open.
    """
    pairs = []
    for interval in get_intervals(hub, day):
        open_min = time_to_minutes(interval["open"])
        close_min = time_to_minutes(interval["close"])
        if close_min > open_min:
            pairs.append((open_min, close_min))
    return pairs


def evaluate_hub(hub: Optional[Hub], city: Optional[City], now: Optional[datetime] = None) -> AvailabilityDecision:
    """
    Run the cascade against already-loaded rows.

    ``decide_availability`` is the normal entry point; this is split out so
    callers that already hold the hub and city rows skip the lookups.
    """
    if hub is None:
        return _deny(AvailabilityReason.HUB_INACTIVE, MSG_HUB_UNAVAILABLE, "hub")

    if not hub.city_id or int(hub.city_id) <= 0:
        return _configuration_error()

    if city is None:
        return _deny(AvailabilityReason.CITY_INACTIVE, MSG_CITY_UNAVAILABLE, "city")
    if not city.is_operational:
        return _deny(AvailabilityReason.CITY_NOT_OPERATIONAL, MSG_CITY_PAUSED, "city")
    if city.status != "active":
        return _deny(AvailabilityReason.CITY_INACTIVE, MSG_CITY_UNAVAILABLE, "city")

    if hub.status != "active":
        return _deny(AvailabilityReason.HUB_INACTIVE, MSG_HUB_UNAVAILABLE, "hub")

    tz = resolve_timezone(hub.timezone)
    if tz is None:
        logger.warning("Hub %s has missing or invalid timezone %r", hub.id, hub.timezone)
        return _configuration_error()

    local_now = hub_now(tz, now)

    closure_until_raw = (hub.closure_until or "").strip()
    closure_reason = (hub.closure_reason or "").strip()

    if closure_reason and not closure_until_raw:
        return _deny(AvailabilityReason.HUB_CLOSED_INDEFINITELY, MSG_TEMP_CLOSED, "hub")

    if closure_until_raw:
        closure_until = parse_closure_until(closure_until_raw, tz)
        if closure_until is None:
            logger.warning("Hub %s has unparseable closure_until %r", hub.id, closure_until_raw)
            return _configuration_error()
        if local_now <= closure_until:
            return _deny(
                AvailabilityReason.HUB_TEMP_CLOSED,
                MSG_TEMP_CLOSED,
                "hub",
                reopen_at=closure_until.isoformat(timespec="seconds"),
            )

    intervals = same_day_intervals(hub, WEEKDAYS[local_now.weekday()])
    if not intervals:
        return _deny(AvailabilityReason.HUB_NO_HOURS_SET, MSG_NO_HOURS, "hours")

    current = local_now.hour * 60 + local_now.minute
    active_close = None
    for open_min, close_min in intervals:
        if open_min <= current < close_min:
            active_close = close_min
            break

    if active_close is None:
        return _deny(AvailabilityReason.HUB_OUTSIDE_HOURS, MSG_OUTSIDE_HOURS, "hours")

    if current >= active_close - AVAILABILITY_CUTOFF_MINUTES:
        return _deny(AvailabilityReason.HUB_CLOSING_SOON, MSG_CLOSING_SOON, "hours")

    return AvailabilityDecision(
        can_order=True,
        reason=AvailabilityReason.AVAILABLE,
        message=MSG_AVAILABLE,
        source="hub",
    )


def decide_availability(db: Session, hub_id: Any, now: Optional[datetime] = None) -> AvailabilityDecision:
    """
    Decide whether ``hub_id`` accepts orders at ``now``.

    Never raises. Any unexpected failure is logged and reported as
    HUB_CONFIGURATION_ERROR.

    Args:
        db: Database session
        hub_id: Hub primary key
        now: Point in time to evaluate, defaults to the current time

    Returns:
        AvailabilityDecision
    """
    try:
        hub_id = int(hub_id)
    except (TypeError, ValueError):
        hub_id = 0
    if hub_id <= 0:
        return _deny(AvailabilityReason.HUB_INACTIVE, MSG_HUB_UNAVAILABLE, "hub")

    try:
        hub = db.query(Hub).filter(Hub.id == hub_id).first()
        city = None
        if hub is not None and hub.city_id:
            city = db.query(City).filter(City.id == hub.city_id).first()
        return evaluate_hub(hub, city, now)
    except Exception:
        logger.exception("Availability check failed for hub %s", hub_id)
        return _configuration_error()


def build_block_response(decision: Any) -> Dict[str, Any]:
    """
    Standard 409 payload for a refused order.

    Accepts an AvailabilityDecision or its dict form. The HTTP layer is
    responsible for the 409 status itself.
    """
    if isinstance(decision, AvailabilityDecision):
        decision = decision.to_dict()
    decision = decision or {}

    return {
        "success": False,
        "error": "availability_block",
        "can_order": False,
        "can_place_order": False,
        "reason": str(decision.get("reason") or "UNKNOWN"),
        "message": str(decision.get("message") or "Restaurant unavailable"),
        "availability": decision,
    }
