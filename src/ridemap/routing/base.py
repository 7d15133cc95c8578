"""
Shared routing types.

Providers return a `RouteLeg` (travel time + display geometry in lat/lng order), or
`None` when the upstream answered but had no usable route. Transport failures and
non-2xx responses surface as `httpx.HTTPError`; invalid JSON as `ValueError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from ridemap.domain.models import LatLng


class RoutingConfigError(RuntimeError):
    """Raised when a routing provider is called without the configuration it needs."""


@dataclass(frozen=True)
class RouteLeg:
    """One routed leg between two points."""

    time_seconds: float | None
    path: list[LatLng] = field(default_factory=list)


class RoutingProvider(Protocol):
    name: str

    async def route(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> RouteLeg | None: ...


def lng_lat_to_path(coordinates: Any) -> list[LatLng]:
    """Convert provider `[lng, lat]` pairs into `LatLng` points, skipping malformed pairs."""
    if not isinstance(coordinates, list):
        return []
    path: list[LatLng] = []
    for pair in coordinates:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        try:
            path.append(LatLng(lat=float(pair[1]), lng=float(pair[0])))
        except (TypeError, ValueError):
            continue
    return path


def first_feature(payload: Any) -> dict[str, Any] | None:
    """Return `features[0]` of a GeoJSON FeatureCollection, if present."""
    if not isinstance(payload, dict):
        return None
    features = payload.get("features")
    if not isinstance(features, list) or not features:
        return None
    feature = features[0]
    return feature if isinstance(feature, dict) else None


def as_seconds(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None
