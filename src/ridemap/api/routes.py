"""
API routes.

Endpoints:
- GET  `/api/health`: liveness check.
- GET  `/api/drivers`: the driver listing.
- POST `/api/region`: viewport for rider/destination.
- POST `/api/markers`: synthesized driver markers around the rider.
- POST `/api/estimates`: per-driver ETA + price (two routing legs per driver).
- POST `/api/route`: rider -> destination display route (primary/fallback/straight line).
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from ridemap.config.settings import get_settings
from ridemap.core.provider_meta import capture_provider_meta
from ridemap.domain.models import Coordinate, Marker, Region, RouteResult, known
from ridemap.drivers.loader import DriverListing, fetch_driver_listing
from ridemap.mapping.markers import synthesize_markers
from ridemap.mapping.region import compute_region
from ridemap.routing.estimator import build_providers, calculate_route, estimate_driver_times
from ridemap.routing.geoapify import GeoapifyClient
from ridemap.routing.openrouteservice import OpenRouteServiceClient

router = APIRouter()


class RegionRequest(BaseModel):
    rider: Coordinate | None = None
    destination: Coordinate | None = None


class MarkersRequest(BaseModel):
    rider: Coordinate


class EstimateRequest(BaseModel):
    rider: Coordinate
    destination: Coordinate
    # When omitted, markers are synthesized from the driver listing.
    markers: list[Marker] | None = None


class RouteRequest(BaseModel):
    rider: Coordinate
    destination: Coordinate


@lru_cache
def _providers() -> tuple[GeoapifyClient, OpenRouteServiceClient]:
    return build_providers(get_settings())


def _driver_listing() -> DriverListing:
    return fetch_driver_listing(get_settings())


async def _available_drivers() -> DriverListing:
    listing = await run_in_threadpool(_driver_listing)
    if not listing.available:
        raise HTTPException(
            status_code=503,
            detail={"code": "DRIVERS_UNAVAILABLE", "message": listing.error or "Driver listing is loading."},
        )
    return listing


def _markers_for(listing: DriverListing, rider: Coordinate) -> list[Marker]:
    settings = get_settings()
    return synthesize_markers(
        listing.drivers,
        rider.latitude,
        rider.longitude,
        max_offset_deg=settings.mapping.markers.max_offset_deg,
    )


@router.get("/api/health")
def get_health() -> dict:
    return {"status": "ok"}


@router.get("/api/drivers")
async def get_drivers() -> dict:
    """Return the driver listing in the `{"data": [...]}` shape clients expect."""
    listing = await _available_drivers()
    return {"data": [d.model_dump(mode="json") for d in listing.drivers]}


@router.post("/api/region", response_model=Region)
def post_region(request: RegionRequest) -> Region:
    return compute_region(request.rider, request.destination, settings=get_settings())


@router.post("/api/markers")
async def post_markers(request: MarkersRequest) -> dict:
    if not known(request.rider):
        return {"markers": []}
    listing = await _available_drivers()
    markers = _markers_for(listing, request.rider)
    return {"markers": [m.model_dump(mode="json") for m in markers]}


@router.post("/api/estimates")
async def post_estimates(request: EstimateRequest) -> dict:
    """Estimate ETA and fare for every driver; unroutable drivers are left out."""
    if request.markers is not None:
        markers = request.markers
    elif known(request.rider):
        markers = _markers_for(await _available_drivers(), request.rider)
    else:
        markers = []

    primary, _ = _providers()
    with capture_provider_meta() as meta:
        enriched = await estimate_driver_times(
            markers,
            request.rider.latitude,
            request.rider.longitude,
            request.destination.latitude,
            request.destination.longitude,
            provider=primary,
            settings=get_settings(),
        )
    return {
        "markers": [m.model_dump(mode="json") for m in enriched],
        "meta": {"requested": len(markers), "providers": meta.sources},
    }


@router.post("/api/route", response_model=RouteResult)
async def post_route(request: RouteRequest) -> RouteResult:
    primary, fallback = _providers()
    result = await calculate_route(request.rider, request.destination, primary=primary, fallback=fallback)
    if result is None:
        raise HTTPException(
            status_code=422,
            detail={"code": "VALIDATION_ERROR", "message": "rider and destination must be valid coordinates"},
        )
    return result
