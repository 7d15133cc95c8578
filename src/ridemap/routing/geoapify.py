"""
Geoapify routing client (primary provider).

Request:  GET {base_url}?waypoints=lat,lng|lat,lng&mode=drive&apiKey=KEY
Response: {"features": [{"properties": {"time": seconds},
                         "geometry": {"coordinates": [[[lng, lat], ...]]}}]}

A response without `features[0]` or `properties.time` means "no route" and yields None.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ridemap.config.settings import Settings
from ridemap.core.http import get_json_async
from ridemap.routing.base import RouteLeg, RoutingConfigError, as_seconds, first_feature, lng_lat_to_path

logger = logging.getLogger(__name__)


def parse_route(payload: Any) -> RouteLeg | None:
    """Parse a Geoapify routing response into a `RouteLeg` (None when unusable)."""
    feature = first_feature(payload)
    if feature is None:
        return None

    properties = feature.get("properties") or {}
    time_seconds = as_seconds(properties.get("time")) if isinstance(properties, dict) else None
    if time_seconds is None:
        return None

    geometry = feature.get("geometry") or {}
    coordinates = geometry.get("coordinates") if isinstance(geometry, dict) else None
    # MultiLineString: the first line is the route for a two-waypoint request.
    line = coordinates[0] if isinstance(coordinates, list) and coordinates else []
    return RouteLeg(time_seconds=time_seconds, path=lng_lat_to_path(line))


class GeoapifyClient:
    """Async Geoapify routing client."""

    name = "geoapify"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._client = client

    def _require_api_key(self) -> str:
        api_key = self._settings.routing.primary.api_key
        if not api_key:
            raise RoutingConfigError("Geoapify API key is not configured. Set GEOAPIFY_API_KEY.")
        return api_key

    async def route(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> RouteLeg | None:
        cfg = self._settings.routing.primary
        params = {
            "waypoints": f"{origin_lat},{origin_lng}|{dest_lat},{dest_lng}",
            "mode": cfg.mode,
            "apiKey": self._require_api_key(),
        }
        payload = await get_json_async(
            cfg.base_url,
            params=params,
            timeout_seconds=self._settings.app.http_timeout_seconds,
            client=self._client,
        )
        if isinstance(payload, dict) and payload.get("error"):
            logger.warning("Geoapify returned an error payload: %s", payload.get("error"))
            return None
        return parse_route(payload)
