"""
Map state synchronizer.

Owns the "what should be displayed" snapshot for one rendering-surface session and
keeps the surface in sync with it:

- nothing is pushed until the surface itself signals readiness,
- every input change is reduced to a fingerprint (coordinates rounded to
  `coordinate_precision` digits, marker count, selected id, route length) and only
  a changed fingerprint produces an `updateMap` message,
- a failed push or a surface-reported error tears the surface down and
  re-initializes it after `reload_delay_seconds`, up to `max_reload_attempts`
  consecutive failures; after that the synchronizer stays FAILED until `retry()`.

State machine:

    UNINITIALIZED --mapReady--> READY --push--> UPDATING --> READY
    READY/UPDATING/UNINITIALIZED --failure--> RELOADING --reinit--> UNINITIALIZED
    any --failure #max--> FAILED --retry()--> UNINITIALIZED
    any --close()--> CLOSED
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Sequence
from enum import Enum
from typing import Any

from ridemap.config.settings import SyncSettings, get_settings
from ridemap.domain.models import (
    Coordinate,
    LatLng,
    Marker,
    Snapshot,
    SnapshotMarker,
    UpdateMapMessage,
    known,
)
from ridemap.sync.surface import RenderingSurface

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    UPDATING = "updating"
    RELOADING = "reloading"
    FAILED = "failed"
    CLOSED = "closed"


def _to_lat_lng(value: Coordinate | LatLng | None) -> LatLng | None:
    if value is None:
        return None
    if isinstance(value, LatLng):
        return value if Coordinate(latitude=value.lat, longitude=value.lng).is_valid() else None
    return LatLng(lat=value.latitude, lng=value.longitude) if known(value) else None


def _same_id(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a) == str(b)


class MapStateSynchronizer:
    """Pushes deduplicated snapshots to a `RenderingSurface` and recovers from its failures."""

    def __init__(self, surface: RenderingSurface, settings: SyncSettings | None = None):
        self._surface = surface
        self._cfg = settings or get_settings().sync
        self._state = SyncState.UNINITIALIZED

        self._user_location: LatLng | None = None
        self._markers: list[Marker] = []
        self._selected_id: str | int | None = None
        self._destination: LatLng | None = None
        self._route: list[LatLng] = []

        self._snapshot: Snapshot | None = None
        self._fingerprint: str | None = None
        self._push_count = 0
        self._dirty = False

        self._attempts = 0
        self._last_error: str | None = None
        self._reload_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def snapshot(self) -> Snapshot | None:
        """The last snapshot handed to the surface (None before the first push)."""
        return self._snapshot

    @property
    def push_count(self) -> int:
        return self._push_count

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_error(self) -> str | None:
        return self._last_error

    async def start(self) -> None:
        """Register surface callbacks and initialize the surface."""
        if self._state is SyncState.CLOSED:
            raise RuntimeError("Synchronizer is closed.")
        self._surface.on_ready(self._handle_ready)
        self._surface.on_error(self._handle_error)
        self._state = SyncState.UNINITIALIZED
        try:
            await self._surface.initialize()
        except Exception as exc:
            logger.exception("Rendering surface failed to initialize")
            await self._handle_failure(f"Map failed to load: {exc}")

    async def update(
        self,
        *,
        user_location: Coordinate | LatLng | None = _UNSET,
        markers: Sequence[Marker] = _UNSET,
        selected_id: str | int | None = _UNSET,
        destination: Coordinate | LatLng | None = _UNSET,
        route: Sequence[LatLng] = _UNSET,
    ) -> bool:
        """Record the latest inputs (last write wins) and push if ready and changed.

        Returns True when at least one `updateMap` message was sent.
        """
        if self._state is SyncState.CLOSED:
            return False
        if user_location is not _UNSET:
            self._user_location = _to_lat_lng(user_location)
        if markers is not _UNSET:
            self._markers = list(markers or [])
        if selected_id is not _UNSET:
            self._selected_id = selected_id
        if destination is not _UNSET:
            self._destination = _to_lat_lng(destination)
        if route is not _UNSET:
            self._route = list(route or [])
        return await self.flush()

    def build_snapshot(self) -> Snapshot | None:
        """Build the candidate snapshot from current inputs (None while the rider is unknown)."""
        if self._user_location is None:
            return None
        return Snapshot(
            user_location=self._user_location,
            markers=[
                SnapshotMarker(
                    id=marker.id,
                    lat=marker.latitude,
                    lng=marker.longitude,
                    title=marker.title or "Driver",
                    selected=_same_id(marker.id, self._selected_id),
                )
                for marker in self._markers
            ],
            destination=self._destination,
            route=list(self._route),
        )

    def fingerprint(self, snapshot: Snapshot) -> str:
        digits = self._cfg.coordinate_precision

        def fmt(value: float) -> str:
            # `+ 0.0` folds -0.0 into 0.0 so sign jitter around zero is not a change.
            return f"{round(value, digits) + 0.0:.{digits}f}"

        destination = snapshot.destination
        return json.dumps(
            {
                "userLat": fmt(snapshot.user_location.lat),
                "userLng": fmt(snapshot.user_location.lng),
                "markerCount": len(snapshot.markers),
                "selectedDriver": None if self._selected_id is None else str(self._selected_id),
                "destLat": fmt(destination.lat) if destination else None,
                "destLng": fmt(destination.lng) if destination else None,
                "routeLength": len(snapshot.route),
            },
            sort_keys=True,
        )

    async def flush(self) -> bool:
        """Push the current inputs if the surface is ready and the fingerprint changed.

        While a push is in flight, later calls only mark the inputs dirty; the
        in-flight call re-evaluates once more after its push completes, so bursts of
        changes collapse into a single follow-up message.
        """
        if self._state is SyncState.UPDATING:
            self._dirty = True
            return False
        if self._state is not SyncState.READY:
            return False

        sent = False
        while True:
            self._dirty = False
            candidate = self.build_snapshot()
            if candidate is None:
                return sent
            fingerprint = self.fingerprint(candidate)
            if fingerprint == self._fingerprint:
                return sent

            self._snapshot = candidate
            self._fingerprint = fingerprint
            self._state = SyncState.UPDATING
            logger.debug(
                "Sending map update: markers=%s destination=%s route_points=%s",
                len(candidate.markers),
                candidate.destination is not None,
                len(candidate.route),
            )
            try:
                await self._surface.push(UpdateMapMessage(data=candidate))
            except Exception as exc:
                logger.error("Failed to send map update to surface: %s", exc)
                await self._handle_failure(f"Communication error with map: {exc}")
                return sent
            except BaseException:
                # Cancelled mid-push: the surface may or may not have the snapshot.
                if self._state is SyncState.UPDATING:
                    self._state = SyncState.READY
                    self._fingerprint = None
                raise

            if self._state is not SyncState.UPDATING:
                # Closed, or the surface failed while the push was in flight.
                return True
            self._push_count += 1
            sent = True
            self._state = SyncState.READY
            if not self._dirty:
                return sent

    async def retry(self) -> None:
        """Manual retry: reset the failure counter and re-initialize the surface."""
        if self._state is SyncState.CLOSED:
            return
        logger.info("Manual map retry requested")
        self._cancel_reload()
        self._attempts = 0
        self._last_error = None
        await self._reinitialize()

    async def close(self) -> None:
        """End the session: cancel pending reloads, tear down the surface, drop the snapshot."""
        if self._state is SyncState.CLOSED:
            return
        self._state = SyncState.CLOSED
        task = self._cancel_reload()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self._surface.teardown()
        except Exception:
            logger.exception("Rendering surface teardown failed")
        self._snapshot = None
        self._fingerprint = None
        self._markers = []
        self._route = []
        self._user_location = None
        self._destination = None

    async def _handle_ready(self) -> None:
        if self._state in (SyncState.CLOSED, SyncState.FAILED, SyncState.RELOADING):
            logger.debug("Ignoring mapReady while %s", self._state.value)
            return
        self._attempts = 0
        self._last_error = None
        # A freshly (re)loaded surface shows nothing yet.
        self._fingerprint = None
        if self._state is SyncState.UPDATING:
            # The in-flight push re-evaluates once it completes.
            self._dirty = True
            return
        self._state = SyncState.READY
        await self.flush()

    async def _handle_error(self, error: str) -> None:
        await self._handle_failure(error)

    async def _handle_failure(self, error: str) -> None:
        if self._state in (SyncState.CLOSED, SyncState.FAILED):
            return
        self._attempts += 1
        self._last_error = error
        self._fingerprint = None
        self._cancel_reload()

        limit = self._cfg.max_reload_attempts
        if self._attempts >= limit:
            self._state = SyncState.FAILED
            logger.error("Map surface failed %s times; waiting for manual retry (%s)", self._attempts, error)
            return

        self._state = SyncState.RELOADING
        logger.warning(
            "Map surface error (%s); reloading in %.2fs (attempt %s/%s)",
            error,
            self._cfg.reload_delay_seconds,
            self._attempts,
            limit,
        )
        self._reload_task = asyncio.create_task(self._reload_after_delay())

    async def _reload_after_delay(self) -> None:
        await asyncio.sleep(self._cfg.reload_delay_seconds)
        await self._reinitialize()

    async def _reinitialize(self) -> None:
        try:
            await self._surface.teardown()
            self._fingerprint = None
            self._state = SyncState.UNINITIALIZED
            await self._surface.initialize()
        except Exception as exc:
            logger.exception("Rendering surface failed to reload")
            await self._handle_failure(f"Map failed to load: {exc}")

    def _cancel_reload(self) -> asyncio.Task[None] | None:
        task, self._reload_task = self._reload_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task
