"""Great-circle distance helpers."""

import math
from typing import Tuple

EARTH_RADIUS_KM = 6371.0
_KM_PER_DEGREE_LAT = 111.32


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two coordinates in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """Return (south, west, north, east) enclosing a circle of ``radius_km``.

    The box is only a pre-filter; callers still check the exact distance. Near
    the poles or across the antimeridian the full longitude span is returned.
    """
    d_lat = radius_km / _KM_PER_DEGREE_LAT
    south = max(-90.0, lat - d_lat)
    north = min(90.0, lat + d_lat)

    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6:
        return south, -180.0, north, 180.0
    d_lng = radius_km / (_KM_PER_DEGREE_LAT * cos_lat)
    west = lng - d_lng
    east = lng + d_lng
    if d_lng >= 180.0 or west < -180.0 or east > 180.0:
        return south, -180.0, north, 180.0
    return south, west, north, east


def valid_coordinates(lat: float, lng: float) -> bool:
    return (
        math.isfinite(lat)
        and math.isfinite(lng)
        and -90.0 <= lat <= 90.0
        and -180.0 <= lng <= 180.0
    )
