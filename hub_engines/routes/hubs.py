"""
Hub Routes for Hub Engines
==========================

Endpoints:
----------
- GET /hubs/{hub_id}/availability: Availability decision (the ordering gate)
- GET /hubs/{hub_id}/hours: Informational status and weekly hours

Availability always answers 200 with a decision; a closed hub is a normal
result, not an error. Only the checkout endpoint turns a refusal into a 409.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..clock import get_now
from ..db import get_db
from ..models import Hub
from ..schemas.hubs import AvailabilityOut, HubHoursOut
from ..services.availability import decide_availability
from ..services.hours import format_weekly, get_status


logger = logging.getLogger(__name__)

hubs_router = APIRouter(prefix="/hubs", tags=["Hubs"])


@hubs_router.get("/{hub_id}/availability", response_model=AvailabilityOut)
def get_hub_availability(
    hub_id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> AvailabilityOut:
    """Whether the hub can accept an order right now, with a reason code."""
    decision = decide_availability(db, hub_id, now)
    return AvailabilityOut(**decision.to_dict())


@hubs_router.get("/{hub_id}/hours", response_model=HubHoursOut)
def get_hub_hours(
    hub_id: int,
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
) -> HubHoursOut:
    hub = db.query(Hub).filter(Hub.id == hub_id).first()
    if not hub:
        raise HTTPException(status_code=404, detail="Hub not found")

    status = get_status(hub, now)
    return HubHoursOut(hub_id=hub.id, weekly=format_weekly(hub), **status)
