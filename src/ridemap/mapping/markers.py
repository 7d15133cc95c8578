"""
Marker synthesis.

Drivers in the listing carry no live position, so each refresh scatters them
uniformly within `max_offset_deg` of the rider (0.005 deg is roughly 550 m at
mid-latitudes). Positions are re-drawn on every call; nothing is stable per driver.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from ridemap.core.geo import is_valid_lat_lng
from ridemap.domain.models import Driver, Marker

logger = logging.getLogger(__name__)

DEFAULT_MAX_OFFSET_DEG = 0.005


def _driver_fields(driver: Driver | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(driver, Driver):
        return driver.model_dump(exclude_none=True)
    if isinstance(driver, Mapping):
        return {str(k): v for k, v in driver.items() if v is not None}
    return {}


def _title(fields: Mapping[str, Any]) -> str:
    parts = []
    for key in ("first_name", "last_name"):
        value = fields.get(key)
        if isinstance(value, str) and value.strip():
            parts.append(value.strip())
    return " ".join(parts)


def synthesize_markers(
    drivers: Iterable[Driver | Mapping[str, Any]],
    rider_lat: float,
    rider_lng: float,
    *,
    max_offset_deg: float = DEFAULT_MAX_OFFSET_DEG,
    rng: random.Random | None = None,
) -> list[Marker]:
    """Place every driver at a random point near the rider.

    Returns one marker per driver (empty for an empty listing or an unknown rider).
    Absent driver fields are skipped; a missing id falls back to the list index and
    an id that is neither a string nor an integer is replaced by its string form.
    """
    if not is_valid_lat_lng(rider_lat, rider_lng):
        return []

    draw = rng.uniform if rng is not None else random.uniform
    offset = abs(float(max_offset_deg))

    markers: list[Marker] = []
    for index, driver in enumerate(drivers):
        fields = _driver_fields(driver)
        for reserved in ("latitude", "longitude", "title", "time", "price", "route_path"):
            fields.pop(reserved, None)
        driver_id = fields.get("id")
        if driver_id is None:
            fields["id"] = index
        elif isinstance(driver_id, bool) or not isinstance(driver_id, (str, int)):
            logger.warning("Driver %s has an unsupported id %r; using its string form", index, driver_id)
            fields["id"] = str(driver_id)

        try:
            marker = Marker(
                latitude=float(rider_lat) + draw(-offset, offset),
                longitude=float(rider_lng) + draw(-offset, offset),
                title=_title(fields),
                **fields,
            )
        except (TypeError, ValidationError) as exc:
            logger.warning("Skipping malformed driver record %s: %s", index, exc)
            continue
        markers.append(marker)

    logger.debug("Synthesized %s markers around (%.5f, %.5f)", len(markers), rider_lat, rider_lng)
    return markers
