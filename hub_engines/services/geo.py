"""
GeoMath
=======

Pure geometry helpers shared by the coverage and distance engines.

Key Functions:
--------------
- haversine_distance: Great-circle distance in km or miles
- spherical_cosine_distance: Legacy law-of-cosines distance, kept for comparison only
- point_in_polygon: Ray-casting containment test over an auto-closed ring
- parse_polygon: Normalize GeoJSON / legacy polygon encodings into GeoPoints

Coordinate Order:
-----------------
GeoJSON stores positions as ``[lng, lat]`` (RFC 7946). The legacy pair format
stores ``[lat, lng]``. Internally every point is a ``GeoPoint(lat, lng)``; the
converters below swap explicitly, never implicitly.

Polygon Parsing:
----------------
parse_polygon returns a ``PolygonParseResult`` instead of raising. When the
input is rejected, ``reason`` is one of the ``PolygonError`` codes:

    result = parse_polygon(zone.polygon_geojson)
    if not result.ok:
        logger.info("Zone %s unusable: %s", zone.id, result.reason)

MultiPolygon input only uses the first polygon's outer ring. Holes are never
considered.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence

from ..config import (
    EARTH_RADIUS_KM,
    EARTH_RADIUS_MI,
    KM_PER_MILE,
    LAT_RANGE,
    LNG_RANGE,
    RAY_CASTING_EPSILON,
)


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


class PolygonError(str, Enum):
    INVALID_JSON = "INVALID_JSON"
    INVALID_STRUCTURE = "INVALID_STRUCTURE"
    INVALID_GEOJSON = "INVALID_GEOJSON"
    TOO_FEW_POINTS = "TOO_FEW_POINTS"
    MALFORMED_COORD = "MALFORMED_COORD"
    MALFORMED_POINT = "MALFORMED_POINT"
    NON_NUMERIC_COORD = "NON_NUMERIC_COORD"
    OUT_OF_RANGE_LAT = "OUT_OF_RANGE_LAT"
    OUT_OF_RANGE_LNG = "OUT_OF_RANGE_LNG"


@dataclass
class PolygonParseResult:
    ok: bool
    points: List[GeoPoint] = field(default_factory=list)
    reason: Optional[PolygonError] = None

    @classmethod
    def fail(cls, reason: PolygonError) -> "PolygonParseResult":
        return cls(ok=False, points=[], reason=reason)


class _ParseFailure(Exception):
    def __init__(self, reason: PolygonError):
        super().__init__(reason.value)
        self.reason = reason


# =============================================================================
# Distance
# =============================================================================

def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float, unit: str = "km") -> float:
    """
    Great-circle distance between two coordinates.

    Args:
        lat1, lng1: First point in decimal degrees
        lat2, lng2: Second point in decimal degrees
        unit: "km" or "mi"

    Returns:
        Unrounded distance in the requested unit
    """
    if unit not in ("km", "mi"):
        raise ValueError(f"Unsupported distance unit: {unit!r}")

    radius = EARTH_RADIUS_MI if unit == "mi" else EARTH_RADIUS_KM

    d_lat = math.radians(float(lat2) - float(lat1))
    d_lng = math.radians(float(lng2) - float(lng1))

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(float(lat1)))
        * math.cos(math.radians(float(lat2)))
        * math.sin(d_lng / 2) ** 2
    )
    # Float error can push a a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius * c


def spherical_cosine_distance(lat1: float, lng1: float, lat2: float, lng2: float, unit: str = "mi") -> float:
    """
    Spherical law of cosines distance.

    Not used by any engine. It reproduces the older distance helper so the
    drift against ``haversine_distance`` can be measured before call sites
    that still expect it are migrated.
    """
    if unit not in ("km", "mi"):
        raise ValueError(f"Unsupported distance unit: {unit!r}")
    if float(lat1) == float(lat2) and float(lng1) == float(lng2):
        return 0.0

    theta = float(lng1) - float(lng2)
    cos_value = (
        math.sin(math.radians(float(lat1))) * math.sin(math.radians(float(lat2)))
        + math.cos(math.radians(float(lat1)))
        * math.cos(math.radians(float(lat2)))
        * math.cos(math.radians(theta))
    )
    cos_value = min(1.0, max(-1.0, cos_value))
    miles = math.degrees(math.acos(cos_value)) * 60 * 1.1515

    if unit == "km":
        return miles * KM_PER_MILE
    return miles


# =============================================================================
# Point in polygon
# =============================================================================

def _lat_lng(point: Any) -> tuple:
    if isinstance(point, dict):
        return float(point["lat"]), float(point["lng"])
    return float(point.lat), float(point.lng)


def point_in_polygon(point: Any, ring: Sequence[Any]) -> bool:
    """
    Ray-casting containment test.

    ``point`` and the ring entries may be GeoPoints or ``{"lat", "lng"}``
    dicts. Rings with fewer than 3 points contain nothing. The ring is closed
    automatically when its first and last points differ.
    """
    if not ring or len(ring) < 3:
        return False

    vertices = [_lat_lng(p) for p in ring]
    if vertices[0] != vertices[-1]:
        vertices.append(vertices[0])

    y, x = _lat_lng(point)
    inside = False
    n = len(vertices)

    for i in range(n):
        j = (i + 1) % n
        yi, xi = vertices[i]
        yj, xj = vertices[j]

        if (yi < y <= yj) or (yj < y <= yi):
            denominator = (yj - yi) or RAY_CASTING_EPSILON
            cross = xi + (y - yi) / denominator * (xj - xi)
            if cross < x:
                inside = not inside

    return inside


# =============================================================================
# Polygon parsing
# =============================================================================

def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _checked_point(lat: Any, lng: Any) -> GeoPoint:
    lat_f = _numeric(lat)
    lng_f = _numeric(lng)
    if lat_f is None or lng_f is None:
        raise _ParseFailure(PolygonError.NON_NUMERIC_COORD)
    if not LAT_RANGE[0] <= lat_f <= LAT_RANGE[1]:
        raise _ParseFailure(PolygonError.OUT_OF_RANGE_LAT)
    if not LNG_RANGE[0] <= lng_f <= LNG_RANGE[1]:
        raise _ParseFailure(PolygonError.OUT_OF_RANGE_LNG)
    return GeoPoint(lat=lat_f, lng=lng_f)


def _geojson_ring_to_points(ring: Any) -> List[GeoPoint]:
    if not isinstance(ring, list) or len(ring) < 3:
        raise _ParseFailure(PolygonError.TOO_FEW_POINTS)

    points = []
    for position in ring:
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            raise _ParseFailure(PolygonError.MALFORMED_COORD)
        # [lng, lat]
        points.append(_checked_point(position[1], position[0]))
    return points


def _legacy_to_points(raw: list) -> List[GeoPoint]:
    if len(raw) < 3:
        raise _ParseFailure(PolygonError.TOO_FEW_POINTS)

    points = []
    for entry in raw:
        if isinstance(entry, dict) and "lat" in entry and "lng" in entry:
            points.append(_checked_point(entry["lat"], entry["lng"]))
        elif isinstance(entry, (list, tuple)) and len(entry) >= 2:
            # [lat, lng]
            points.append(_checked_point(entry[0], entry[1]))
        else:
            raise _ParseFailure(PolygonError.MALFORMED_POINT)
    return points


def _parse_geojson(decoded: dict) -> List[GeoPoint]:
    geometry_type = decoded.get("type")
    coordinates = decoded.get("coordinates")

    if geometry_type == "Polygon" and isinstance(coordinates, list) and coordinates:
        return _geojson_ring_to_points(coordinates[0])

    if geometry_type == "MultiPolygon" and isinstance(coordinates, list) and coordinates:
        first_polygon = coordinates[0]
        if isinstance(first_polygon, list) and first_polygon:
            return _geojson_ring_to_points(first_polygon[0])

    raise _ParseFailure(PolygonError.INVALID_GEOJSON)


def parse_polygon(raw: Any) -> PolygonParseResult:
    """
    Normalize a stored polygon into a list of GeoPoints.

    Accepts a JSON string or an already-decoded value in any of these shapes:

    - GeoJSON Polygon: ``{"type": "Polygon", "coordinates": [[[lng, lat], ...]]}``
    - GeoJSON MultiPolygon (first polygon, outer ring)
    - Legacy objects: ``[{"lat": .., "lng": ..}, ...]``
    - Legacy pairs: ``[[lat, lng], ...]``

    A GeoJSON Feature wrapping one of the geometries above is unwrapped.
    """
    decoded = raw
    if isinstance(raw, (str, bytes)):
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError):
            return PolygonParseResult.fail(PolygonError.INVALID_JSON)

    if isinstance(decoded, dict) and decoded.get("type") == "Feature":
        decoded = decoded.get("geometry")

    try:
        if isinstance(decoded, dict):
            if "type" not in decoded or "coordinates" not in decoded:
                return PolygonParseResult.fail(PolygonError.INVALID_STRUCTURE)
            points = _parse_geojson(decoded)
        elif isinstance(decoded, list):
            points = _legacy_to_points(decoded)
        else:
            return PolygonParseResult.fail(PolygonError.INVALID_STRUCTURE)
    except _ParseFailure as failure:
        return PolygonParseResult.fail(failure.reason)

    if len(points) < 3:
        return PolygonParseResult.fail(PolygonError.TOO_FEW_POINTS)

    return PolygonParseResult(ok=True, points=points)
