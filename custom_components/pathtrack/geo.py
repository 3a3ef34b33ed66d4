"""Geospatial helpers (no external dependencies)."""
from __future__ import annotations

import math

EARTH_RADIUS_M = 6_371_000.0  # mean Earth radius


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two lat/lon points in degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def coord_key(lat: float, lon: float, precision: int) -> str:
    """Stable cache key for a coordinate rounded to ``precision`` decimals."""
    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"
