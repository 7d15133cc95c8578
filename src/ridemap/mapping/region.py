"""
Region framing.

Computes the viewport a native map renderer should show for the current ride:
- nothing known yet: a fixed default region,
- only the rider known: a small span around the rider,
- rider and destination known: their midpoint, padded so both stay on screen.
"""

from __future__ import annotations

from ridemap.config.settings import RegionSettings, Settings, get_settings
from ridemap.core.geo import midpoint, padded_span
from ridemap.domain.models import Coordinate, Region, known


def compute_region(
    rider: Coordinate | None = None,
    destination: Coordinate | None = None,
    *,
    settings: Settings | None = None,
) -> Region:
    """Return the viewport enclosing the rider and (optionally) the destination."""
    cfg: RegionSettings = (settings or get_settings()).mapping.region

    if not known(rider):
        return Region(
            latitude=cfg.default_latitude,
            longitude=cfg.default_longitude,
            latitude_delta=cfg.default_delta,
            longitude_delta=cfg.default_delta,
        )

    if not known(destination):
        return Region(
            latitude=rider.latitude,
            longitude=rider.longitude,
            latitude_delta=cfg.single_point_delta,
            longitude_delta=cfg.single_point_delta,
        )

    return Region(
        latitude=midpoint(rider.latitude, destination.latitude),
        longitude=midpoint(rider.longitude, destination.longitude),
        latitude_delta=padded_span(rider.latitude, destination.latitude, cfg.padding_factor),
        longitude_delta=padded_span(rider.longitude, destination.longitude, cfg.padding_factor),
    )
