"""
OpenRouteService directions client (fallback provider).

Request:  GET {base_url}?api_key=KEY&start=lng,lat&end=lng,lat
Response: {"features": [{"geometry": {"coordinates": [[lng, lat], ...]},
                         "properties": {"summary": {"duration": seconds}}}]}
"""

from __future__ import annotations

from typing import Any

import httpx

from ridemap.config.settings import Settings
from ridemap.core.http import get_json_async
from ridemap.routing.base import RouteLeg, RoutingConfigError, as_seconds, first_feature, lng_lat_to_path


def parse_route(payload: Any) -> RouteLeg | None:
    """Parse an ORS GeoJSON directions response; duration is optional, geometry is not."""
    feature = first_feature(payload)
    if feature is None:
        return None

    geometry = feature.get("geometry")
    if not isinstance(geometry, dict):
        return None
    path = lng_lat_to_path(geometry.get("coordinates"))
    if not path:
        return None

    properties = feature.get("properties") or {}
    summary = properties.get("summary") if isinstance(properties, dict) else None
    duration = as_seconds(summary.get("duration")) if isinstance(summary, dict) else None
    return RouteLeg(time_seconds=duration, path=path)


class OpenRouteServiceClient:
    """Async OpenRouteService client."""

    name = "openrouteservice"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self._settings = settings
        self._client = client

    async def route(
        self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float
    ) -> RouteLeg | None:
        cfg = self._settings.routing.fallback
        if not cfg.api_key:
            raise RoutingConfigError(
                "OpenRouteService API key is not configured. Set OPENROUTESERVICE_API_KEY."
            )
        params = {
            "api_key": cfg.api_key,
            "start": f"{origin_lng},{origin_lat}",
            "end": f"{dest_lng},{dest_lat}",
        }
        payload = await get_json_async(
            cfg.base_url,
            params=params,
            timeout_seconds=self._settings.app.http_timeout_seconds,
            client=self._client,
        )
        return parse_route(payload)
