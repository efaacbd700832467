"""
Hub Schemas for Hub Engines
===========================

Response models for hub availability and opening hours.

Endpoint Coverage:
------------------
- GET /hubs/{hub_id}/availability: Can the hub take an order now
- GET /hubs/{hub_id}/hours: Display status and weekly hours

AvailabilityOut has exactly the six keys of an availability decision. Clients
branch on ``reason``; ``message`` is for display only.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel


class AvailabilityOut(BaseModel):
    """
    Availability decision for one hub.

    Attributes:
        can_order: Whether an order may be placed right now
        reason: Stable reason code (AVAILABLE, HUB_OUTSIDE_HOURS, ...)
        message: Customer-facing text
        reopen_at: ISO timestamp when a temporary closure ends, if known
        source: Which layer decided (city, hub, hours)
        severity: Always "hard"; a refusal is never advisory
    """
    can_order: bool
    reason: str
    message: str
    reopen_at: Optional[str] = None
    severity: str
    source: str


class HoursInterval(BaseModel):
    open: str
    close: str


class DayHoursOut(BaseModel):
    day: str
    day_short: str
    is_open: bool
    hours: str
    intervals: List[HoursInterval] = []


class HubHoursOut(BaseModel):
    """
    Informational open/closed status plus the weekly schedule.

    This is display data and does not gate ordering; use the availability
    endpoint for that.
    """
    hub_id: int
    is_open: bool
    status_text: str
    hours_today: Optional[str] = None
    next_change: Optional[str] = None
    is_temp_closed: bool = False
    closure_until: Optional[str] = None
    closure_reason: Optional[str] = None
    weekly: Dict[str, DayHoursOut] = {}
