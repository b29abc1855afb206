"""Geodesy and Web-Mercator helpers shared by tracking, routing and the map."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

EARTH_RADIUS_M = 6371e3
TILE_SIZE = 256
MAX_TILE_ZOOM = 18


@dataclass(frozen=True)
class LatLng:
    """A WGS84 coordinate pair."""

    lat: float
    lon: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lon)


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = (math.sin(d_phi / 2) * math.sin(d_phi / 2)
         + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) * math.sin(d_lambda / 2))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Forward azimuth from the first point to the second, in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)
    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def distance_between(a: LatLng, b: LatLng) -> float:
    return haversine_distance_m(a.lat, a.lon, b.lat, b.lon)


def bearing_between(a: LatLng, b: LatLng) -> float:
    return initial_bearing_deg(a.lat, a.lon, b.lat, b.lon)


def bearing_to_compass(bearing: float) -> str:
    """Convert bearing degrees to a 16-point compass direction."""
    directions = ["N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
                  "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW"]
    bearing = bearing % 360
    index = int((bearing + 11.25) / 22.5) % 16
    return directions[index]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_distance(meters: float) -> str:
    """Short distance label: metres below one kilometre, otherwise km."""
    if meters < 1000:
        return f"{round_half_up(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    """Whole minutes, e.g. ``"12 min"``."""
    return f"{round_half_up(seconds / 60)} min"


# ----------------------------------------------------------------------
# Web-Mercator tile space
# ----------------------------------------------------------------------
def coordinate_to_tile(latitude: float, longitude: float, zoom: int) -> Tuple[int, int]:
    """Convert WGS84 coordinates to XYZ tile indices."""
    lat_rad = math.radians(latitude)
    n = 2.0 ** zoom
    x = math.floor((longitude + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    return x, y


def world_pixel(latitude: float, longitude: float, zoom: float) -> Tuple[float, float]:
    """Project a coordinate into global pixel space at ``zoom``."""
    # Clamp to the Mercator limit so the poles stay finite.
    latitude = max(-85.05112878, min(85.05112878, latitude))
    scale = TILE_SIZE * (2.0 ** zoom)
    x = (longitude + 180.0) / 360.0 * scale
    sin_lat = math.sin(math.radians(latitude))
    y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * scale
    return x, y


def pixel_to_coordinate(x: float, y: float, zoom: float) -> LatLng:
    """Inverse of :func:`world_pixel`."""
    scale = TILE_SIZE * (2.0 ** zoom)
    lon = x / scale * 360.0 - 180.0
    n = math.pi - 2.0 * math.pi * y / scale
    lat = math.degrees(math.atan(math.sinh(n)))
    return LatLng(lat, lon)


def fit_zoom(a: LatLng, b: LatLng, width: int, height: int,
             padding: int = 50, max_zoom: int = MAX_TILE_ZOOM) -> int:
    """Largest integer zoom at which both points fit inside the padded view."""
    usable_w = max(1, width - 2 * padding)
    usable_h = max(1, height - 2 * padding)
    for zoom in range(max_zoom, -1, -1):
        ax, ay = world_pixel(a.lat, a.lon, zoom)
        bx, by = world_pixel(b.lat, b.lon, zoom)
        if abs(ax - bx) <= usable_w and abs(ay - by) <= usable_h:
            return zoom
    return 0


def midpoint(a: LatLng, b: LatLng) -> LatLng:
    """Midpoint in projected space, which is what a fitted map view centres on."""
    ax, ay = world_pixel(a.lat, a.lon, 0)
    bx, by = world_pixel(b.lat, b.lon, 0)
    return pixel_to_coordinate((ax + bx) / 2, (ay + by) / 2, 0)
