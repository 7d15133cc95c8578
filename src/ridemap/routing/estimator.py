"""
Route & ETA estimation.

For every candidate driver marker we ask the routing provider for two legs:
driver -> rider (pickup) and rider -> destination (trip). The combined travel time
becomes the marker's ETA in whole minutes (truncated), the fare is a flat
per-minute rate on that ETA, and the trip leg's geometry is the display route.

Failure policy (best-effort batch):
- unknown rider/destination: no network calls, empty result
- one marker's legs fail or come back unusable: that marker is dropped
- anything else failing the whole batch: logged, empty result
Nothing raised by a provider escapes `estimate_driver_times` or `calculate_route`.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable

import httpx

from ridemap.config.settings import Settings, get_settings
from ridemap.core.geo import is_valid_lat_lng
from ridemap.core.provider_meta import record_provider_use
from ridemap.domain.models import Coordinate, LatLng, Marker, RouteResult, known
from ridemap.routing.base import RouteLeg, RoutingProvider
from ridemap.routing.geoapify import GeoapifyClient
from ridemap.routing.openrouteservice import OpenRouteServiceClient

logger = logging.getLogger(__name__)


def build_providers(
    settings: Settings, client: httpx.AsyncClient | None = None
) -> tuple[GeoapifyClient, OpenRouteServiceClient]:
    """Return the (primary, fallback) routing providers sharing one optional HTTP client."""
    return GeoapifyClient(settings, client), OpenRouteServiceClient(settings, client)


def compute_fare(total_minutes: int, per_minute_rate: float) -> str:
    """Linear time-based fare, formatted with exactly two decimals."""
    return f"{total_minutes * per_minute_rate:.2f}"


def combined_minutes(to_rider_seconds: float, to_destination_seconds: float) -> int:
    """Whole minutes of pickup + trip time (truncated, not rounded)."""
    return math.floor((to_rider_seconds + to_destination_seconds) / 60)


async def _estimate_one(
    marker: Marker,
    provider: RoutingProvider,
    rider_lat: float,
    rider_lng: float,
    dest_lat: float,
    dest_lng: float,
    *,
    per_minute_rate: float,
    shared_trip_leg: asyncio.Future[RouteLeg | None] | None,
) -> Marker | None:
    try:
        to_rider = await provider.route(marker.latitude, marker.longitude, rider_lat, rider_lng)
        if to_rider is None or to_rider.time_seconds is None:
            logger.debug("Dropping marker %s: no pickup route", marker.id)
            return None

        if shared_trip_leg is not None:
            to_destination = await asyncio.shield(shared_trip_leg)
        else:
            to_destination = await provider.route(rider_lat, rider_lng, dest_lat, dest_lng)
        if to_destination is None or to_destination.time_seconds is None:
            logger.debug("Dropping marker %s: no trip route", marker.id)
            return None
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Dropping marker %s: routing request failed (%s)", marker.id, exc)
        return None

    total_minutes = combined_minutes(to_rider.time_seconds, to_destination.time_seconds)
    return marker.model_copy(
        update={
            "time": total_minutes,
            "price": compute_fare(total_minutes, per_minute_rate),
            "route_path": list(to_destination.path),
        }
    )


def _settle(task: asyncio.Future | None) -> None:
    """Cancel a still-running shared task, or consume its exception if it already failed."""
    if task is None:
        return
    if not task.done():
        task.cancel()
    elif not task.cancelled():
        task.exception()


async def estimate_driver_times(
    markers: Iterable[Marker],
    rider_lat: float | None,
    rider_lng: float | None,
    dest_lat: float | None,
    dest_lng: float | None,
    *,
    provider: RoutingProvider,
    settings: Settings | None = None,
) -> list[Marker]:
    """Enrich markers with `time` (minutes), `price` and `route_path`.

    All per-marker chains run concurrently; the call returns once every chain has
    settled. Surviving markers keep their input order.
    """
    if not (is_valid_lat_lng(rider_lat, rider_lng) and is_valid_lat_lng(dest_lat, dest_lng)):
        return []

    candidates = list(markers)
    if not candidates:
        return []

    settings = settings or get_settings()
    per_minute_rate = float(settings.pricing.per_minute_rate)
    shared_trip_leg: asyncio.Future[RouteLeg | None] | None = None
    pending: list[asyncio.Future[Marker | None]] = []

    try:
        if settings.routing.hoist_destination_leg:
            shared_trip_leg = asyncio.ensure_future(
                provider.route(rider_lat, rider_lng, dest_lat, dest_lng)
            )
        try:
            pending = [
                asyncio.ensure_future(
                    _estimate_one(
                        marker,
                        provider,
                        rider_lat,
                        rider_lng,
                        dest_lat,
                        dest_lng,
                        per_minute_rate=per_minute_rate,
                        shared_trip_leg=shared_trip_leg,
                    )
                )
                for marker in candidates
            ]
            results = await asyncio.gather(*pending)
        finally:
            # A failing chain must not leave its siblings running after the batch returns.
            for task in pending:
                _settle(task)
            _settle(shared_trip_leg)
    except Exception:
        logger.exception("Error calculating driver times")
        record_provider_use(
            f"estimate:{getattr(provider, 'name', 'unknown')}",
            {"requested": len(candidates), "enriched": 0, "dropped": len(candidates), "failed": True},
        )
        return []

    enriched = [m for m in results if m is not None]
    record_provider_use(
        f"estimate:{getattr(provider, 'name', 'unknown')}",
        {
            "requested": len(candidates),
            "enriched": len(enriched),
            "dropped": len(candidates) - len(enriched),
            "failed": False,
        },
    )
    return enriched


def straight_line(rider: Coordinate, destination: Coordinate) -> list[LatLng]:
    return [
        LatLng(lat=rider.latitude, lng=rider.longitude),
        LatLng(lat=destination.latitude, lng=destination.longitude),
    ]


async def calculate_route(
    rider: Coordinate | None,
    destination: Coordinate | None,
    *,
    primary: RoutingProvider,
    fallback: RoutingProvider | None = None,
) -> RouteResult | None:
    """Return the rider -> destination display route.

    Tries `primary`, then `fallback`; when both fail the route is the straight
    segment between the two points, so there is always something to draw.
    Returns None (no calls made) while either endpoint is unknown.
    """
    if not (known(rider) and known(destination)):
        return None

    for provider in (primary, fallback):
        if provider is None:
            continue
        try:
            leg = await provider.route(
                rider.latitude, rider.longitude, destination.latitude, destination.longitude
            )
        except Exception as exc:
            logger.warning("Route calculation via %s failed: %s", provider.name, exc)
            record_provider_use(f"route:{provider.name}", {"mode": "error", "error": str(exc)})
            continue

        if leg is None or not leg.path:
            logger.warning("Route calculation via %s returned no usable route", provider.name)
            record_provider_use(f"route:{provider.name}", {"mode": "empty"})
            continue

        logger.info("Route calculated via %s (%s points)", provider.name, len(leg.path))
        record_provider_use(f"route:{provider.name}", {"mode": "live", "points": len(leg.path)})
        return RouteResult(provider=provider.name, path=leg.path, time_seconds=leg.time_seconds)

    logger.warning("All routing providers failed; falling back to a straight line")
    record_provider_use("route:straight_line", {"mode": "fallback", "points": 2})
    return RouteResult(provider="straight_line", path=straight_line(rider, destination))
