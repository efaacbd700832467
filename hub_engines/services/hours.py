"""
Working Hours Engine
====================

Informational hours view for hubs: parses each day's interval JSON, works out
whether the hub is open right now, and renders display strings.

This is the display-side engine. It understands overnight intervals
(close earlier than open means the interval runs past midnight) and falls
back to a default timezone when a hub has none. Order gating does neither;
see availability.py.

Key Functions:
--------------
- get_intervals: Valid {open, close} intervals for one weekday
- get_status: Open/closed/temp-closed status for "now" in the hub's timezone
- format_interval: "9:00 - 5:00 PM" style display strings
- format_today / format_weekly / get_public_status: Display helpers
- enrich_hub / enrich_hubs: Attach status fields to hub objects for responses
- filter_open_hubs: Ids of hubs that are open right now

Hours Column Format:
--------------------
    hours_monday = '[{"open": "09:00", "close": "14:00"}, {"open": "17:00", "close": "22:00"}]'

Malformed JSON or a non-array yields no intervals. Individual intervals with a
bad time are dropped while the rest of the day is kept.
"""

import logging
import re
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ..config import DEFAULT_HUB_TIMEZONE
from ..models import Hub, WEEKDAYS
from .helpers import load_json

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")

DAY_NAMES = {day: day.capitalize() for day in WEEKDAYS}

# Fields enrich_hub writes onto a hub object
STATUS_FIELDS = (
    "is_open",
    "status_text",
    "hours_today",
    "next_change",
    "is_temp_closed",
    "closure_until",
    "closure_reason",
)


# =============================================================================
# Parsing
# =============================================================================

def _field(hub: Any, name: str) -> Any:
    if isinstance(hub, dict):
        return hub.get(name)
    return getattr(hub, name, None)


def is_valid_time(value: Any) -> bool:
    return isinstance(value, str) and bool(TIME_PATTERN.match(value))


def time_to_minutes(value: str) -> int:
    """Minutes since midnight for an already-validated "H:MM" / "HH:MM" string."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def resolve_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
    """ZoneInfo for an IANA name, or None when empty or unknown."""
    if not name or not isinstance(name, str):
        return None
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None


def parse_closure_until(raw: Any, tz: ZoneInfo) -> Optional[datetime]:
    """
    Parse a stored closure_until value into an aware datetime.

    Naive values are interpreted in the hub's timezone. Returns None when the
    value cannot be parsed.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    else:
        text = str(raw).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def hub_now(tz: ZoneInfo, now: Optional[datetime] = None) -> datetime:
    """Current time in ``tz``. A naive ``now`` is taken to be UTC."""
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    return now.astimezone(tz)


def get_intervals(hub: Any, day: str) -> List[Dict[str, str]]:
    """
    Valid intervals for ``day`` ("monday" .. "sunday").

    Args:
        hub: Hub row or any object exposing ``hours_<day>``
        day: Lowercase weekday name

    Returns:
        List of {"open": "HH:MM", "close": "HH:MM"} dicts, possibly empty
    """
    raw = _field(hub, f"hours_{day.lower()}")
    intervals = load_json(raw)
    if not isinstance(intervals, list):
        return []

    valid = []
    for interval in intervals:
        if (
            isinstance(interval, dict)
            and is_valid_time(interval.get("open"))
            and is_valid_time(interval.get("close"))
        ):
            valid.append({"open": interval["open"], "close": interval["close"]})
    return valid


def _is_overnight(open_time: str, close_time: str) -> bool:
    return time_to_minutes(close_time) < time_to_minutes(open_time)


# =============================================================================
# Formatting
# =============================================================================

def _twelve_hour(value: str) -> tuple:
    minutes = time_to_minutes(value)
    hour, minute = divmod(minutes, 60)
    suffix = "AM" if hour < 12 else "PM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d}", suffix


def format_interval(open_time: str, close_time: str, overnight: Optional[bool] = None, style: str = "12h") -> str:
    """
    Render one interval for display.

    Styles:
        12h:   "9:00 AM - 5:00 PM"
        24h:   "09:00 - 17:00"
        mixed: "9:00 - 11:30 AM" (AM/PM dropped from the open side when both match)

    Overnight intervals get a trailing " +1".
    """
    if not is_valid_time(open_time) or not is_valid_time(close_time):
        return f"{open_time} - {close_time}"

    if overnight is None:
        overnight = _is_overnight(open_time, close_time)

    if style == "24h":
        open_h, open_m = divmod(time_to_minutes(open_time), 60)
        close_h, close_m = divmod(time_to_minutes(close_time), 60)
        formatted = f"{open_h:02d}:{open_m:02d} - {close_h:02d}:{close_m:02d}"
    else:
        open_clock, open_suffix = _twelve_hour(open_time)
        close_clock, close_suffix = _twelve_hour(close_time)
        if style == "mixed" and open_suffix == close_suffix:
            formatted = f"{open_clock} - {close_clock} {close_suffix}"
        else:
            formatted = f"{open_clock} {open_suffix} - {close_clock} {close_suffix}"

    if overnight:
        formatted += " +1"
    return formatted


def _format_intervals(intervals: Iterable[Dict[str, str]], style: str = "mixed") -> str:
    return ", ".join(
        format_interval(i["open"], i["close"], _is_overnight(i["open"], i["close"]), style)
        for i in intervals
    )


# =============================================================================
# Status
# =============================================================================

def get_status(hub: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Open/closed status of a hub at ``now`` (defaults to the current time).

    Evaluated in order: inactive hub, temporary closure (an unparseable
    closure_until counts as an indefinite closure), then today's intervals in
    the hub's timezone.

    Returns:
        Dict with is_open, status_text, hours_today, next_change,
        is_temp_closed, closure_until, closure_reason
    """
    result: Dict[str, Any] = {
        "is_open": False,
        "status_text": "Closed",
        "hours_today": None,
        "next_change": None,
        "is_temp_closed": False,
        "closure_until": None,
        "closure_reason": "",
    }

    if _field(hub, "status") != "active":
        result["status_text"] = "Inactive"
        return result

    tz = resolve_timezone(_field(hub, "timezone") or DEFAULT_HUB_TIMEZONE)
    if tz is None:
        tz = ZoneInfo("UTC")
    local_now = hub_now(tz, now)

    closure_raw = (_field(hub, "closure_until") or "").strip()
    closure_reason = (_field(hub, "closure_reason") or "").strip()

    if closure_raw:
        closure_until = parse_closure_until(closure_raw, tz)
        if closure_until is None:
            result.update(
                is_temp_closed=True,
                status_text="Temporarily Closed",
                closure_reason=closure_reason,
                hours_today="Temporarily closed (indefinite).",
                closure_until=closure_raw,
            )
            return result
        if local_now <= closure_until:
            result.update(
                is_temp_closed=True,
                status_text="Temporarily Closed",
                closure_reason=closure_reason,
                hours_today=closure_reason or "Temporarily closed, back soon.",
                next_change=closure_until.isoformat(timespec="seconds"),
                closure_until=closure_until.isoformat(timespec="seconds"),
            )
            return result

    day = WEEKDAYS[local_now.weekday()]
    intervals = get_intervals(hub, day)
    if not intervals:
        result["hours_today"] = "Closed"
        return result

    current = local_now.hour * 60 + local_now.minute
    is_open_now = False
    next_opening = None
    next_closing = None

    for interval in intervals:
        open_min = time_to_minutes(interval["open"])
        close_min = time_to_minutes(interval["close"])

        if close_min < open_min:
            is_open_here = current >= open_min or current < close_min
        else:
            is_open_here = open_min <= current < close_min

        if is_open_here:
            is_open_now = True
            next_closing = interval["close"]
        elif current < open_min and next_opening is None:
            next_opening = interval["open"]

    result["is_open"] = is_open_now
    result["status_text"] = "Open now" if is_open_now else "Closed"
    result["hours_today"] = _format_intervals(intervals)
    result["next_change"] = next_closing or next_opening
    return result


def format_today(hub: Any, now: Optional[datetime] = None) -> str:
    return get_status(hub, now)["hours_today"] or "Closed"


def format_weekly(hub: Any) -> Dict[str, Dict[str, Any]]:
    """Per-day display data keyed by lowercase weekday, Monday first."""
    weekly = {}
    for day in WEEKDAYS:
        intervals = get_intervals(hub, day)
        weekly[day] = {
            "day": DAY_NAMES[day],
            "day_short": DAY_NAMES[day][:3],
            "is_open": bool(intervals),
            "hours": _format_intervals(intervals) if intervals else "Closed",
            "intervals": intervals,
        }
    return weekly


def get_public_status(hub: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    status = get_status(hub, now)
    result = {
        "status": "Open now" if status["is_open"] else "Closed",
        "hours": status["hours_today"] or "Closed today",
        "is_open": status["is_open"],
        "status_class": "open" if status["is_open"] else "closed",
    }
    if status["is_temp_closed"]:
        result["status"] = "Temp. Closed"
        result["status_class"] = "temp-closed"
    return result


def enrich_hub(hub: Any, now: Optional[datetime] = None) -> Any:
    """
    Attach the status fields from get_status onto ``hub``.

    Works on plain objects and dicts. This mutates the passed object's
    display fields only; the stored hours and closure columns are left alone
    except that closure_until/closure_reason are replaced by their display form,
    so never call this on a row attached to a session that will be flushed.
    """
    status = get_status(hub, now)
    for key in STATUS_FIELDS:
        if isinstance(hub, dict):
            hub[key] = status[key]
        else:
            setattr(hub, key, status[key])
    return hub


def enrich_hubs(hubs: Optional[List[Any]], now: Optional[datetime] = None) -> None:
    if not hubs:
        return
    for hub in hubs:
        enrich_hub(hub, now)


def filter_open_hubs(db: Session, hub_ids: Iterable[int], now: Optional[datetime] = None) -> List[int]:
    """Ids from ``hub_ids`` whose informational status is open right now."""
    ids = [int(h) for h in hub_ids if int(h) > 0]
    if not ids:
        return []

    hubs = db.query(Hub).filter(Hub.id.in_(ids), Hub.status == "active").all()
    open_ids = {hub.id for hub in hubs if get_status(hub, now)["is_open"]}
    return [hub_id for hub_id in ids if hub_id in open_ids]
