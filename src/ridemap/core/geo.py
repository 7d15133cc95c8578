"""
Geospatial helpers.

Coordinates arrive from location services and place search with no guarantees:
they may be missing, NaN, or out of range. These helpers decide whether a
coordinate is usable; unusable ones are treated as "unknown" by callers and
suppress downstream computation instead of raising.
"""

from __future__ import annotations

import math
from typing import Any


def is_valid_lat_lng(lat: Any, lng: Any) -> bool:
    """Return True when (lat, lng) are finite WGS84 degrees within range."""
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


def midpoint(a: float, b: float) -> float:
    return (a + b) / 2


def padded_span(a: float, b: float, factor: float) -> float:
    """Span between two values on one axis, scaled by `factor`; never negative."""
    return abs(max(a, b) - min(a, b)) * abs(factor)
