"""
Coverage Engine
===============

Answers "does hub X deliver to this coordinate?" using the hub's polygon
delivery zones, with the hub's own delivery radius as a fallback.

Algorithm:
----------
1. hub_id must be positive and neither coordinate may be 0. A 0 latitude or
   longitude is treated as missing (no real customer address sits there).
2. The hub must exist (its coordinates and radius feed the fallback).
3. Active zones are loaded in the order given by a ``ZoneOrdering`` policy.
   The default is insertion order (id ASC).
4. No zones at all: radius fallback. Inside the radius is RADIUS_FALLBACK,
   outside is OUT_OF_RADIUS, and a hub without coordinates or radius is
   NO_ACTIVE_ZONE.
5. Otherwise each polygon zone is parsed (polygon_geojson first, then the
   legacy polygon_points) and tested. Unparseable zones are logged and skipped.
   The first containing zone wins with DELIVERABLE.
6. No match: if at least one zone was usable the answer is OUT_OF_COVERAGE.
   If none was usable the radius fallback from step 4 runs again, and a hub
   with no radius configured ends up OUT_OF_COVERAGE.

Radius-type zones are not evaluated yet. They are skipped and logged with
ZONE_NOT_POLYGON.

Result Shape:
-------------
    {"ok", "zone_id", "reason", "zone_name"}                 # always
    {"distance_mi", "radius_mi"}                             # radius results only
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import DeliveryZone, Hub
from .geo import GeoPoint, haversine_distance, parse_polygon, point_in_polygon
from .helpers import to_float, to_int

logger = logging.getLogger(__name__)

RADIUS_ZONE_NAME = "Hub Radius"


class CoverageReason(str, Enum):
    DELIVERABLE = "DELIVERABLE"
    RADIUS_FALLBACK = "RADIUS_FALLBACK"
    OUT_OF_COVERAGE = "OUT_OF_COVERAGE"
    OUT_OF_RADIUS = "OUT_OF_RADIUS"
    NO_ACTIVE_ZONE = "NO_ACTIVE_ZONE"
    HUB_NOT_FOUND = "HUB_NOT_FOUND"
    INVALID_HUB_ID = "INVALID_HUB_ID"
    MISSING_COORDS = "MISSING_COORDS"
    # Per-zone skip reasons, logged but never returned as the overall result
    ZONE_NOT_POLYGON = "ZONE_NOT_POLYGON"
    MISSING_POLYGON = "MISSING_POLYGON"
    INVALID_POLYGON = "INVALID_POLYGON"


class ZoneOrdering(str, Enum):
    """Order in which a hub's zones are tried; the first match wins."""

    INSERTION = "insertion"  # id ASC
    PRIORITY = "priority"  # priority DESC, id ASC


DEFAULT_ZONE_ORDERING = ZoneOrdering.INSERTION


@dataclass(frozen=True)
class CoverageResult:
    ok: bool
    reason: CoverageReason
    zone_id: Optional[int] = None
    zone_name: Optional[str] = None
    distance_mi: Optional[float] = None
    radius_mi: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ok": self.ok,
            "zone_id": self.zone_id,
            "reason": self.reason.value,
            "zone_name": self.zone_name,
        }
        if self.distance_mi is not None:
            data["distance_mi"] = self.distance_mi
        if self.radius_mi is not None:
            data["radius_mi"] = self.radius_mi
        return data


def _fail(reason: CoverageReason) -> CoverageResult:
    return CoverageResult(ok=False, reason=reason)


def load_active_zones(db: Session, hub_id: int, ordering: ZoneOrdering = DEFAULT_ZONE_ORDERING) -> List[DeliveryZone]:
    query = db.query(DeliveryZone).filter(
        DeliveryZone.hub_id == hub_id,
        DeliveryZone.is_active.is_(True),
    )
    if ordering == ZoneOrdering.PRIORITY:
        query = query.order_by(DeliveryZone.priority.desc(), DeliveryZone.id.asc())
    else:
        query = query.order_by(DeliveryZone.id.asc())
    return query.all()


def _has_radius(hub: Hub) -> bool:
    return bool(hub.latitude) and bool(hub.longitude) and to_float(hub.delivery_radius) > 0


def _radius_check(hub: Hub, lat: float, lng: float) -> CoverageResult:
    radius_mi = to_float(hub.delivery_radius)
    distance_mi = haversine_distance(lat, lng, hub.latitude, hub.longitude, "mi")

    if distance_mi <= radius_mi:
        return CoverageResult(
            ok=True,
            reason=CoverageReason.RADIUS_FALLBACK,
            zone_name=RADIUS_ZONE_NAME,
            distance_mi=round(distance_mi, 2),
            radius_mi=radius_mi,
        )
    return CoverageResult(
        ok=False,
        reason=CoverageReason.OUT_OF_RADIUS,
        distance_mi=round(distance_mi, 2),
        radius_mi=radius_mi,
    )


def zone_polygon(zone: DeliveryZone) -> Optional[List[GeoPoint]]:
    """
    Parsed ring for a polygon zone, or None when the zone is unusable.

    polygon_geojson is tried first; legacy polygon_points is used when the
    GeoJSON column is empty or fails to parse.
    """
    sources = [
        ("geojson", zone.polygon_geojson),
        ("points", zone.polygon_points),
    ]
    sources = [(label, raw) for label, raw in sources if raw]
    if not sources:
        logger.info("Zone %s skipped: %s", zone.id, CoverageReason.MISSING_POLYGON.value)
        return None

    for label, raw in sources:
        parsed = parse_polygon(raw)
        if parsed.ok:
            return parsed.points
        logger.info(
            "Zone %s %s polygon rejected: %s",
            zone.id,
            label,
            parsed.reason.value if parsed.reason else CoverageReason.INVALID_POLYGON.value,
        )
    return None


def check_coverage(
    db: Session,
    hub_id: Any,
    lat: Any,
    lng: Any,
    ordering: ZoneOrdering = DEFAULT_ZONE_ORDERING,
) -> CoverageResult:
    """
    Resolve whether ``(lat, lng)`` is inside the delivery area of ``hub_id``.

    Never raises. Unexpected failures are logged and reported as
    OUT_OF_COVERAGE.
    """
    hub_id = to_int(hub_id)
    lat = to_float(lat)
    lng = to_float(lng)

    if hub_id <= 0:
        return _fail(CoverageReason.INVALID_HUB_ID)
    if lat == 0.0 or lng == 0.0:
        return _fail(CoverageReason.MISSING_COORDS)

    try:
        return _check_coverage(db, hub_id, lat, lng, ordering)
    except Exception:
        logger.exception("Coverage check failed for hub %s", hub_id)
        return _fail(CoverageReason.OUT_OF_COVERAGE)


def _check_coverage(db: Session, hub_id: int, lat: float, lng: float, ordering: ZoneOrdering) -> CoverageResult:
    hub = db.query(Hub).filter(Hub.id == hub_id).first()
    if hub is None:
        return _fail(CoverageReason.HUB_NOT_FOUND)

    zones = load_active_zones(db, hub_id, ordering)
    logger.debug("Hub %s: %d active zones", hub_id, len(zones))

    if not zones:
        if _has_radius(hub):
            return _radius_check(hub, lat, lng)
        return _fail(CoverageReason.NO_ACTIVE_ZONE)

    point = GeoPoint(lat=lat, lng=lng)
    has_valid_zone = False

    for zone in zones:
        zone_type = zone.zone_type or "polygon"

        if zone_type != "polygon":
            # Radius zones are recognized but not evaluated
            logger.info("Zone %s skipped: %s (%s)", zone.id, CoverageReason.ZONE_NOT_POLYGON.value, zone_type)
            continue

        ring = zone_polygon(zone)
        if not ring:
            continue

        has_valid_zone = True
        if point_in_polygon(point, ring):
            return CoverageResult(
                ok=True,
                reason=CoverageReason.DELIVERABLE,
                zone_id=zone.id,
                zone_name=zone.zone_name,
            )

    if not has_valid_zone and _has_radius(hub):
        return _radius_check(hub, lat, lng)

    return _fail(CoverageReason.OUT_OF_COVERAGE)
