from __future__ import annotations

# This module is the orchestrator for one map session (one rendering surface).
# It wires together:
# - explicit ride context (rider, destination, selected driver) instead of a global store
# - the driver listing -> marker synthesis
# - the route calculation and per-driver ETA/price estimation (network, failure-prone)
# - the map state synchronizer that pushes snapshots to the surface
# - an optional estimates callback for whoever lists drivers next to the map
#
# Network work runs in background tasks tagged with a generation number; a result
# from a superseded generation, or arriving after close(), is discarded.

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, replace
from typing import Any

from ridemap.config.settings import Settings, get_settings
from ridemap.domain.models import Coordinate, Marker, RouteResult, known
from ridemap.drivers.loader import DriverListing
from ridemap.mapping.markers import synthesize_markers
from ridemap.routing.base import RoutingProvider
from ridemap.routing.estimator import calculate_route, estimate_driver_times
from ridemap.sync.surface import RenderingSurface
from ridemap.sync.synchronizer import MapStateSynchronizer

logger = logging.getLogger(__name__)

_UNSET: Any = object()

EstimatesCallback = Callable[[list[Marker]], Awaitable[None]]


@dataclass(frozen=True)
class RideContext:
    """Who is riding from where to where, and which driver they picked."""

    rider: Coordinate | None = None
    destination: Coordinate | None = None
    selected_driver_id: str | int | None = None


class MapSession:
    """Keeps markers, route and estimates for one surface session up to date."""

    def __init__(
        self,
        *,
        surface: RenderingSurface,
        primary: RoutingProvider,
        fallback: RoutingProvider | None = None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        on_estimates: EstimatesCallback | None = None,
    ):
        self._settings = settings or get_settings()
        self._primary = primary
        self._fallback = fallback
        self._rng = rng
        self._on_estimates = on_estimates
        self.synchronizer = MapStateSynchronizer(surface, self._settings.sync)

        self.context = RideContext()
        self.listing = DriverListing(loading=True)
        self.markers: list[Marker] = []
        self.enriched_markers: list[Marker] = []
        self.route: RouteResult | None = None

        self._tasks: set[asyncio.Task[None]] = set()
        self._route_generation = 0
        self._estimate_generation = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        await self.synchronizer.start()

    async def set_drivers(self, listing: DriverListing) -> None:
        """Replace the driver listing and re-synthesize markers around the rider."""
        if self._closed:
            return
        self.listing = listing
        if self._resynthesize():
            self._schedule_estimate()
        await self._sync()

    async def set_context(
        self,
        *,
        rider: Coordinate | None = _UNSET,
        destination: Coordinate | None = _UNSET,
        selected_driver_id: str | int | None = _UNSET,
    ) -> None:
        """Apply a context change and recompute whatever depends on it."""
        if self._closed:
            return
        previous = self.context
        updates: dict[str, Any] = {}
        if rider is not _UNSET:
            updates["rider"] = rider
        if destination is not _UNSET:
            updates["destination"] = destination
        if selected_driver_id is not _UNSET:
            updates["selected_driver_id"] = selected_driver_id
        self.context = replace(previous, **updates)

        rider_changed = self.context.rider != previous.rider
        destination_changed = self.context.destination != previous.destination

        markers_changed = rider_changed and self._resynthesize()
        if rider_changed or destination_changed:
            self._schedule_route()
        if markers_changed or destination_changed:
            self._schedule_estimate()
        await self._sync()

    async def wait_idle(self) -> None:
        """Wait until every in-flight route/estimate computation has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight work and end the synchronizer session."""
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.synchronizer.close()

    def _resynthesize(self) -> bool:
        rider = self.context.rider
        if not self.listing.available or not known(rider):
            return False
        self.markers = synthesize_markers(
            self.listing.drivers,
            rider.latitude,
            rider.longitude,
            max_offset_deg=self._settings.mapping.markers.max_offset_deg,
            rng=self._rng,
        )
        return True

    def _schedule_route(self) -> None:
        self._route_generation += 1
        generation = self._route_generation
        rider, destination = self.context.rider, self.context.destination

        async def run() -> None:
            result = await calculate_route(
                rider, destination, primary=self._primary, fallback=self._fallback
            )
            if self._closed or generation != self._route_generation:
                logger.debug("Discarding stale route result (generation %s)", generation)
                return
            self.route = result
            await self._sync()

        self._spawn(run())

    def _schedule_estimate(self) -> None:
        self._estimate_generation += 1
        generation = self._estimate_generation
        markers = list(self.markers)
        rider, destination = self.context.rider, self.context.destination

        async def run() -> None:
            enriched = await estimate_driver_times(
                markers,
                rider.latitude if rider else None,
                rider.longitude if rider else None,
                destination.latitude if destination else None,
                destination.longitude if destination else None,
                provider=self._primary,
                settings=self._settings,
            )
            if self._closed or generation != self._estimate_generation:
                logger.debug("Discarding stale driver estimates (generation %s)", generation)
                return
            self.enriched_markers = enriched
            if self._on_estimates is not None:
                await self._on_estimates(enriched)

        self._spawn(run())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Map session background task failed: %s", exc, exc_info=exc)

    async def _sync(self) -> None:
        await self.synchronizer.update(
            user_location=self.context.rider,
            markers=self.markers,
            selected_id=self.context.selected_driver_id,
            destination=self.context.destination,
            route=self.route.path if self.route else [],
        )
