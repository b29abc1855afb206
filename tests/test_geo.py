"""Tests for bearing, distance and tile-space helpers."""

import math

import pytest

from geo import (
    LatLng, bearing_to_compass, coordinate_to_tile, fit_zoom, format_distance,
    format_duration, haversine_distance_m, initial_bearing_deg, midpoint,
    pixel_to_coordinate, world_pixel,
)


def test_bearing_due_east_and_due_north():
    assert initial_bearing_deg(0, 0, 0, 90) == pytest.approx(90.0)
    assert initial_bearing_deg(0, 0, 90, 0) == pytest.approx(0.0)


@pytest.mark.parametrize(
    "start, end",
    [
        ((0, 0), (0, -90)),
        ((10, 10), (-10, -10)),
        ((51.5, -0.12), (40.71, -74.0)),
        ((-33.9, 151.2), (35.7, 139.7)),
        ((0, 0), (0, 0)),
    ],
)
def test_bearing_always_in_range(start, end):
    bearing = initial_bearing_deg(*start, *end)
    assert 0.0 <= bearing < 360.0


def test_bearing_due_west_and_south():
    assert initial_bearing_deg(0, 0, 0, -90) == pytest.approx(270.0)
    assert initial_bearing_deg(10, 0, 0, 0) == pytest.approx(180.0)


def test_haversine_matches_formula():
    # One degree of latitude on a 6371 km sphere.
    assert haversine_distance_m(0, 0, 1, 0) == pytest.approx(6371e3 * math.pi / 180)
    assert haversine_distance_m(40.0, -74.0, 40.0, -74.0) == 0.0


def test_haversine_known_city_pair():
    # New York City to London, roughly 5570 km.
    distance = haversine_distance_m(40.7128, -74.0060, 51.5074, -0.1278)
    assert 5.55e6 < distance < 5.59e6


def test_bearing_to_compass():
    assert bearing_to_compass(0) == "N"
    assert bearing_to_compass(90) == "E"
    assert bearing_to_compass(359) == "N"
    assert bearing_to_compass(225) == "SW"


def test_formatting_helpers():
    assert format_distance(850.4) == "850 m"
    assert format_distance(1234) == "1.2 km"
    assert format_duration(610) == "10 min"
    assert format_duration(90) == "2 min"


def test_coordinate_to_tile_known_values():
    assert coordinate_to_tile(0.0, 0.0, 0) == (0, 0)
    assert coordinate_to_tile(0.0, 0.0, 1) == (1, 1)
    assert coordinate_to_tile(45.0, -90.0, 2) == (1, 1)
    assert coordinate_to_tile(-45.0, 90.0, 2) == (3, 2)


def test_world_pixel_round_trip():
    x, y = world_pixel(40.7128, -74.0060, 14)
    point = pixel_to_coordinate(x, y, 14)
    assert point.lat == pytest.approx(40.7128, abs=1e-9)
    assert point.lon == pytest.approx(-74.0060, abs=1e-9)


def test_fit_zoom_fits_both_points():
    a = LatLng(40.7128, -74.0060)
    b = LatLng(40.7484, -73.9857)
    zoom = fit_zoom(a, b, 800, 600, padding=50)
    ax, ay = world_pixel(a.lat, a.lon, zoom)
    bx, by = world_pixel(b.lat, b.lon, zoom)
    assert abs(ax - bx) <= 700 and abs(ay - by) <= 500
    ax, ay = world_pixel(a.lat, a.lon, zoom + 1)
    bx, by = world_pixel(b.lat, b.lon, zoom + 1)
    assert abs(ax - bx) > 700 or abs(ay - by) > 500


def test_midpoint_lies_between_points():
    center = midpoint(LatLng(0.0, 0.0), LatLng(0.0, 10.0))
    assert center.lat == pytest.approx(0.0, abs=1e-9)
    assert center.lon == pytest.approx(5.0)
