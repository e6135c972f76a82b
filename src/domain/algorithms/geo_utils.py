from __future__ import annotations

import math

from src.domain.models import GeoPoint

EARTH_RADIUS_M = 6371000.0

# Metres per degree of latitude (mean).
_M_PER_DEG_LAT = math.pi * EARTH_RADIUS_M / 180.0


def haversine_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters."""

    lat1 = math.radians(a.lat)
    lon1 = math.radians(a.lon)
    lat2 = math.radians(b.lat)
    lon2 = math.radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    s = (
        math.sin(dlat / 2.0) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(s)))


def bounding_box(
    center: GeoPoint, radius_m: float
) -> tuple[float, float, float, float] | None:
    """Return (min_lat, min_lon, max_lat, max_lon) enclosing a circle.

    Returns None when the box would touch a pole or cross the antimeridian;
    callers then have to consider every point.
    """

    dlat = radius_m / _M_PER_DEG_LAT
    min_lat = center.lat - dlat
    max_lat = center.lat + dlat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return None

    # Widest longitude span occurs at the latitude closest to a pole.
    widest_lat = max(abs(min_lat), abs(max_lat))
    cos_lat = math.cos(math.radians(widest_lat))
    dlon = radius_m / (_M_PER_DEG_LAT * cos_lat)
    min_lon = center.lon - dlon
    max_lon = center.lon + dlon
    if min_lon < -180.0 or max_lon > 180.0:
        return None

    return (min_lat, min_lon, max_lat, max_lon)


def grid_cell(lat: float, lon: float, cell_size_deg: float) -> tuple[int, int]:
    """Row/column of the lat/lon grid cell containing a point."""

    return (math.floor(lat / cell_size_deg), math.floor(lon / cell_size_deg))
