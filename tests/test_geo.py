"""
Tests for the geometry helpers: distance, point-in-polygon, polygon parsing.
"""
import json

import pytest

from hub_engines.services.geo import (
    GeoPoint,
    PolygonError,
    haversine_distance,
    parse_polygon,
    point_in_polygon,
    spherical_cosine_distance,
)

# 2x2 degree square, GeoJSON [lng, lat] order
SQUARE_GEOJSON = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [0, 2], [2, 2], [2, 0]]],
}


class TestHaversine:
    """Great-circle distance."""

    def test_identical_points_are_zero(self):
        assert haversine_distance(41.1179, -87.8656, 41.1179, -87.8656, "mi") == 0.0
        assert haversine_distance(41.1179, -87.8656, 41.1179, -87.8656, "km") == 0.0

    @pytest.mark.parametrize("a,b", [
        ((41.8781, -87.6298), (40.7128, -74.0060)),
        ((-33.8688, 151.2093), (51.5074, -0.1278)),
        ((0.0, 179.9), (0.0, -179.9)),
    ])
    def test_symmetric(self, a, b):
        assert haversine_distance(*a, *b) == pytest.approx(haversine_distance(*b, *a))

    def test_chicago_to_new_york(self):
        km = haversine_distance(41.8781, -87.6298, 40.7128, -74.0060, "km")
        assert km == pytest.approx(1145, abs=5)

    def test_miles_and_km_agree(self):
        km = haversine_distance(41.8781, -87.6298, 41.9484, -87.6553, "km")
        mi = haversine_distance(41.8781, -87.6298, 41.9484, -87.6553, "mi")
        assert km / mi == pytest.approx(6371.0 / 3959.0)

    def test_antipodal_points_do_not_fail(self):
        km = haversine_distance(0.0, 0.0, 0.0, 180.0, "km")
        assert km == pytest.approx(3.141592653589793 * 6371.0)

    def test_unknown_unit_rejected(self):
        with pytest.raises(ValueError):
            haversine_distance(0, 0, 1, 1, unit="furlong")


class TestSphericalCosine:
    """Legacy formula kept for drift measurement."""

    def test_identical_points_are_zero(self):
        assert spherical_cosine_distance(41.1179, -87.8656, 41.1179, -87.8656) == 0.0

    def test_close_to_haversine_for_city_distances(self):
        legacy = spherical_cosine_distance(41.8781, -87.6298, 41.9484, -87.6553, "mi")
        current = haversine_distance(41.8781, -87.6298, 41.9484, -87.6553, "mi")
        assert legacy == pytest.approx(current, rel=0.01)


class TestPointInPolygon:
    """Ray-casting containment."""

    def test_square_scenario(self):
        ring = parse_polygon(SQUARE_GEOJSON).points
        assert point_in_polygon({"lat": 1, "lng": 1}, ring) is True
        assert point_in_polygon({"lat": 5, "lng": 5}, ring) is False

    def test_centroid_of_convex_polygon_is_inside(self):
        ring = [GeoPoint(41.80, -87.70), GeoPoint(41.80, -87.55), GeoPoint(41.95, -87.55), GeoPoint(41.95, -87.70)]
        centroid = GeoPoint(
            sum(p.lat for p in ring) / len(ring),
            sum(p.lng for p in ring) / len(ring),
        )
        assert point_in_polygon(centroid, ring) is True

    def test_point_far_outside_bounding_box(self):
        ring = [GeoPoint(41.80, -87.70), GeoPoint(41.80, -87.55), GeoPoint(41.95, -87.55)]
        # Roughly 1,100 km east of the triangle
        assert point_in_polygon(GeoPoint(41.85, -74.0), ring) is False

    def test_closed_and_open_rings_agree(self):
        open_ring = [{"lat": 0, "lng": 0}, {"lat": 0, "lng": 2}, {"lat": 2, "lng": 2}, {"lat": 2, "lng": 0}]
        closed_ring = open_ring + [open_ring[0]]
        point = {"lat": 0.5, "lng": 1.5}
        assert point_in_polygon(point, open_ring) == point_in_polygon(point, closed_ring) is True

    def test_fewer_than_three_points_contains_nothing(self):
        assert point_in_polygon({"lat": 0, "lng": 0}, [{"lat": 0, "lng": 0}, {"lat": 1, "lng": 1}]) is False
        assert point_in_polygon({"lat": 0, "lng": 0}, []) is False

    def test_concave_notch_is_outside(self):
        # U shape opening north; the notch is between lng 1 and 2
        ring = [
            GeoPoint(0, 0), GeoPoint(0, 3), GeoPoint(3, 3), GeoPoint(3, 2),
            GeoPoint(1, 2), GeoPoint(1, 1), GeoPoint(3, 1), GeoPoint(3, 0),
        ]
        assert point_in_polygon(GeoPoint(2, 1.5), ring) is False
        assert point_in_polygon(GeoPoint(2, 0.5), ring) is True


class TestParsePolygon:
    """Normalizing stored polygon encodings."""

    def test_geojson_string_swaps_to_lat_lng(self):
        result = parse_polygon(json.dumps({
            "type": "Polygon",
            "coordinates": [[[-87.7, 41.8], [-87.5, 41.8], [-87.5, 42.0], [-87.7, 41.8]]],
        }))
        assert result.ok
        assert result.points[0] == GeoPoint(lat=41.8, lng=-87.7)

    def test_feature_is_unwrapped(self):
        result = parse_polygon({"type": "Feature", "properties": {}, "geometry": SQUARE_GEOJSON})
        assert result.ok
        assert len(result.points) == 4

    def test_multipolygon_uses_first_outer_ring(self):
        result = parse_polygon({
            "type": "MultiPolygon",
            "coordinates": [
                [[[0, 0], [0, 1], [1, 1], [1, 0]]],
                [[[10, 10], [10, 11], [11, 11], [11, 10]]],
            ],
        })
        assert result.ok
        assert max(p.lat for p in result.points) == 1

    def test_legacy_object_points(self):
        result = parse_polygon([{"lat": 1, "lng": 2}, {"lat": 3, "lng": 4}, {"lat": 5, "lng": 6}])
        assert result.ok
        assert result.points[0] == GeoPoint(lat=1.0, lng=2.0)

    def test_legacy_pairs_are_lat_lng(self):
        result = parse_polygon("[[41.8, -87.7], [41.8, -87.5], [42.0, -87.5]]")
        assert result.ok
        assert result.points[1] == GeoPoint(lat=41.8, lng=-87.5)

    def test_numeric_strings_accepted(self):
        result = parse_polygon([["1", "2"], ["3", "4"], ["5", "6"]])
        assert result.ok

    @pytest.mark.parametrize("raw,reason", [
        ("{not json", PolygonError.INVALID_JSON),
        ({"coordinates": []}, PolygonError.INVALID_STRUCTURE),
        (42, PolygonError.INVALID_STRUCTURE),
        ({"type": "Point", "coordinates": [1, 2]}, PolygonError.INVALID_GEOJSON),
        ({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]}, PolygonError.TOO_FEW_POINTS),
        ([[1, 2], [3, 4]], PolygonError.TOO_FEW_POINTS),
        ({"type": "Polygon", "coordinates": [[[0, 0], [1], [1, 1]]]}, PolygonError.MALFORMED_COORD),
        ([[1, 2], "x", [3, 4]], PolygonError.MALFORMED_POINT),
        ([[1, 2], ["a", 4], [3, 4]], PolygonError.NON_NUMERIC_COORD),
        ([[1, 2], [True, 4], [3, 4]], PolygonError.NON_NUMERIC_COORD),
        ([[91, 0], [1, 1], [2, 2]], PolygonError.OUT_OF_RANGE_LAT),
        ({"type": "Polygon", "coordinates": [[[181, 0], [1, 1], [2, 2]]]}, PolygonError.OUT_OF_RANGE_LNG),
    ])
    def test_rejections(self, raw, reason):
        result = parse_polygon(raw)
        assert result.ok is False
        assert result.reason == reason
        assert result.points == []
