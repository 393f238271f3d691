"""Tests des utilitaires geographiques / Geospatial utility tests."""

import pytest

from delivery_tracking.models.geofence import Geofence
from delivery_tracking.utils.geo import (
    GeoCircle,
    GeoPoint,
    bearing_degrees,
    bounding_box,
    distance_meters,
    is_inside_geofence,
    road_distance_km,
    validate_coordinates,
)

PARIS = GeoPoint(48.8566, 2.3522)
LYON = GeoPoint(45.7640, 4.8357)
DHAKA = GeoPoint(23.8103, 90.4125)
POINTS = [PARIS, LYON, DHAKA, GeoPoint(0.0, 0.0), GeoPoint(-33.8688, 151.2093), GeoPoint(89.9, -179.9)]


@pytest.mark.parametrize("point", POINTS)
def test_distance_to_self_is_zero(point):
    assert distance_meters(point, point) == 0


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b):
    assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))
    assert distance_meters(a, b) >= 0


def test_haversine():
    # Paris -> Lyon ~ 392 km
    dist = distance_meters(PARIS, LYON) / 1000
    assert 380 < dist < 400


def test_road_distance_applies_factor():
    assert road_distance_km(PARIS, LYON) == pytest.approx(distance_meters(PARIS, LYON) / 1000 * 1.3, abs=0.01)
    assert road_distance_km(PARIS, LYON, factor=1.0) < road_distance_km(PARIS, LYON)


def test_bearing_cardinal_directions():
    origin = GeoPoint(0.0, 0.0)
    assert bearing_degrees(origin, GeoPoint(1.0, 0.0)) == pytest.approx(0.0)
    assert bearing_degrees(origin, GeoPoint(0.0, 1.0)) == pytest.approx(90.0)
    assert bearing_degrees(origin, GeoPoint(-1.0, 0.0)) == pytest.approx(180.0)
    assert bearing_degrees(origin, GeoPoint(0.0, -1.0)) == pytest.approx(270.0)


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_bearing_range(a, b):
    assert 0.0 <= bearing_degrees(a, b) < 360.0


def test_geofence_boundary_is_inclusive():
    center = GeoPoint(23.8103, 90.4125)
    edge = GeoPoint(23.8103 + 0.0018, 90.4125)
    radius = distance_meters(edge, center)
    assert is_inside_geofence(edge, GeoCircle(center, radius))
    assert not is_inside_geofence(edge, GeoCircle(center, radius - 1))
    assert is_inside_geofence(center, GeoCircle(center, 0))


def test_geofence_model_exposes_its_circle():
    zone = Geofence(center_latitude=23.8103, center_longitude=90.4125, radius_meters=200.0)
    assert zone.circle == GeoCircle(GeoPoint(23.8103, 90.4125), 200.0)
    assert is_inside_geofence(GeoPoint(23.8110, 90.4125), zone)
    assert not is_inside_geofence(GeoPoint(23.8150, 90.4125), zone.circle)


def test_bounding_box_contains_point():
    lat_min, lat_max, lon_min, lon_max = bounding_box(23.8, 90.4, 5.0)
    assert lat_min < 23.8 < lat_max
    assert lon_min < 90.4 < lon_max
    # 5 km ~ 0.045 degre de latitude / 5 km ~ 0.045 degree of latitude
    assert lat_max - 23.8 == pytest.approx(0.045, abs=0.001)


def test_validate_coordinates():
    assert validate_coordinates(0, 0)
    assert validate_coordinates(-90, 180)
    assert not validate_coordinates(91, 0)
    assert not validate_coordinates(0, -181)
    assert not validate_coordinates(float("nan"), 0)
