"""
Distance Engine
===============

Hub-to-customer distance and delivery ETA.

Key Functions:
--------------
- calculate_delivery_distance: Haversine distance (km and mi) plus ETA
- estimate_eta: Minutes from distance using prep time, speed and traffic
- distance_between_addresses: Distance between two saved customer addresses

ETA Policy:
-----------
    ceil((prep + distance_km / speed * 60 * traffic_factor) / round_to) * round_to

Defaults come from config.py (15 min prep, 30 km/h, 1.2 traffic, round to 5)
and every one of them can be overridden per call.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import (
    ETA_AVERAGE_SPEED_KMH,
    ETA_PREP_MINUTES,
    ETA_ROUND_TO_MINUTES,
    ETA_TRAFFIC_FACTOR,
)
from ..models import CustomerAddress, Hub
from .geo import haversine_distance
from .helpers import to_float, to_int

logger = logging.getLogger(__name__)


class DistanceReason(str, Enum):
    CALCULATED = "CALCULATED"
    INVALID_HUB_ID = "INVALID_HUB_ID"
    MISSING_CUSTOMER_COORDS = "MISSING_CUSTOMER_COORDS"
    HUB_NOT_FOUND = "HUB_NOT_FOUND"
    MISSING_HUB_COORDS = "MISSING_HUB_COORDS"


@dataclass(frozen=True)
class DistanceResult:
    ok: bool
    reason: DistanceReason
    distance_km: float = 0.0
    distance_mi: float = 0.0
    eta_minutes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "distance_km": self.distance_km,
            "distance_mi": self.distance_mi,
            "eta_minutes": self.eta_minutes,
            "reason": self.reason.value,
        }


def estimate_eta(
    distance_km: float,
    traffic_factor: float = ETA_TRAFFIC_FACTOR,
    prep_minutes: float = ETA_PREP_MINUTES,
    speed_kmh: float = ETA_AVERAGE_SPEED_KMH,
    round_to: int = ETA_ROUND_TO_MINUTES,
) -> int:
    """Delivery ETA in minutes, rounded up to the next ``round_to`` step."""
    travel_minutes = distance_km / speed_kmh * 60 * traffic_factor
    total_minutes = prep_minutes + travel_minutes
    return int(math.ceil(total_minutes / round_to) * round_to)


def calculate_delivery_distance(db: Session, hub_id: Any, customer_lat: Any, customer_lng: Any) -> DistanceResult:
    """
    Distance from the hub to the customer with an ETA estimate.

    A latitude or longitude of 0 counts as missing, on both ends.
    """
    hub_id = to_int(hub_id)
    lat = to_float(customer_lat)
    lng = to_float(customer_lng)

    if hub_id <= 0:
        return DistanceResult(ok=False, reason=DistanceReason.INVALID_HUB_ID)
    if lat == 0.0 or lng == 0.0:
        return DistanceResult(ok=False, reason=DistanceReason.MISSING_CUSTOMER_COORDS)

    try:
        hub = db.query(Hub).filter(Hub.id == hub_id).first()
    except Exception:
        logger.exception("Hub lookup failed for distance calculation (hub %s)", hub_id)
        return DistanceResult(ok=False, reason=DistanceReason.HUB_NOT_FOUND)

    if hub is None:
        return DistanceResult(ok=False, reason=DistanceReason.HUB_NOT_FOUND)

    hub_lat = to_float(hub.latitude)
    hub_lng = to_float(hub.longitude)
    if hub_lat == 0.0 or hub_lng == 0.0:
        return DistanceResult(ok=False, reason=DistanceReason.MISSING_HUB_COORDS)

    distance_km = haversine_distance(hub_lat, hub_lng, lat, lng, "km")
    distance_mi = haversine_distance(hub_lat, hub_lng, lat, lng, "mi")

    return DistanceResult(
        ok=True,
        reason=DistanceReason.CALCULATED,
        distance_km=round(distance_km, 2),
        distance_mi=round(distance_mi, 2),
        eta_minutes=estimate_eta(distance_km),
    )


def distance_between_addresses(db: Session, address_id_1: int, address_id_2: int) -> Optional[Dict[str, float]]:
    """
    Distance between two saved addresses, or None when either is missing or
    has no coordinates.
    """
    ids = (to_int(address_id_1), to_int(address_id_2))
    rows = {
        row.id: row
        for row in db.query(CustomerAddress).filter(CustomerAddress.id.in_(ids)).all()
    }
    first, second = rows.get(ids[0]), rows.get(ids[1])
    if first is None or second is None:
        return None

    coords = [
        to_float(first.latitude),
        to_float(first.longitude),
        to_float(second.latitude),
        to_float(second.longitude),
    ]
    if any(value == 0.0 for value in coords):
        return None

    return {
        "distance_km": round(haversine_distance(*coords, unit="km"), 2),
        "distance_mi": round(haversine_distance(*coords, unit="mi"), 2),
    }
