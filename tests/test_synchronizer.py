import asyncio
import json

from ridemap.config.settings import SyncSettings
from ridemap.domain.models import Coordinate, LatLng, Marker
from ridemap.sync.channel import encode_message
from ridemap.sync.surface import SurfaceUnavailableError
from ridemap.sync.synchronizer import MapStateSynchronizer, SyncState


class FakeSurface:
    """In-memory rendering surface; tests trigger mapReady/mapError by hand."""

    def __init__(self, *, fail_push: bool = False):
        self.fail_push = fail_push
        self.pushed = []
        self.initialized = 0
        self.teardowns = 0
        self._ready = None
        self._error = None

    def on_ready(self, callback):
        self._ready = callback

    def on_error(self, callback):
        self._error = callback

    async def initialize(self):
        self.initialized += 1

    async def push(self, message):
        if self.fail_push:
            raise SurfaceUnavailableError("surface went away")
        self.pushed.append(message)

    async def teardown(self):
        self.teardowns += 1

    async def ready(self):
        await self._ready()

    async def error(self, message):
        await self._error(message)


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


def _sync(surface, **overrides):
    cfg = SyncSettings(reload_delay_seconds=0.0, **overrides)
    return MapStateSynchronizer(surface, cfg)


RIDER = Coordinate(latitude=37.7749, longitude=-122.4194)
MARKERS = [
    Marker(id=1, latitude=37.775, longitude=-122.419, title="James Wilson"),
    Marker(id=2, latitude=37.776, longitude=-122.418),
]


def test_updates_before_ready_are_held_until_ready():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()

        sent = await sync.update(user_location=RIDER, markers=MARKERS)
        assert sent is False
        assert surface.pushed == []
        assert sync.state is SyncState.UNINITIALIZED

        await surface.ready()
        return surface, sync

    surface, sync = asyncio.run(run())
    assert sync.state is SyncState.READY
    assert len(surface.pushed) == 1
    snapshot = surface.pushed[0].data
    assert snapshot.user_location == LatLng(lat=37.7749, lng=-122.4194)
    assert [m.title for m in snapshot.markers] == ["James Wilson", "Driver"]


def test_no_snapshot_while_rider_unknown():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()
        await sync.update(user_location=None, markers=MARKERS)
        return surface

    assert asyncio.run(run()).pushed == []


def test_sub_precision_jitter_does_not_push_again():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()

        assert await sync.update(user_location=RIDER, markers=MARKERS) is True
        jitter = Coordinate(latitude=37.77490000001, longitude=-122.41940000004)
        assert await sync.update(user_location=jitter) is False
        moved = Coordinate(latitude=37.7750, longitude=-122.4194)
        assert await sync.update(user_location=moved) is True
        return sync

    sync = asyncio.run(run())
    assert sync.push_count == 2


def test_selection_and_route_changes_push():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()
        await sync.update(user_location=RIDER, markers=MARKERS)
        await sync.update(selected_id="2")
        await sync.update(
            destination=Coordinate(latitude=37.8, longitude=-122.4),
            route=[LatLng(lat=37.7749, lng=-122.4194), LatLng(lat=37.8, lng=-122.4)],
        )
        return surface

    surface = asyncio.run(run())
    assert len(surface.pushed) == 3
    selected = [m.selected for m in surface.pushed[1].data.markers]
    assert selected == [False, True]
    assert len(surface.pushed[2].data.route) == 2


def test_update_message_uses_camel_case_wire_names():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()
        await sync.update(user_location=RIDER, markers=MARKERS[:1], selected_id=1)
        return surface

    message = json.loads(encode_message(asyncio.run(run()).pushed[0]))
    assert message["type"] == "updateMap"
    assert message["data"]["userLocation"] == {"lat": 37.7749, "lng": -122.4194}
    assert message["data"]["markers"][0] == {
        "id": 1,
        "lat": 37.775,
        "lng": -122.419,
        "title": "James Wilson",
        "selected": True,
    }
    assert message["data"]["destination"] is None
    assert message["data"]["route"] == []


def test_surface_errors_reload_then_fail_after_ceiling():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface, max_reload_attempts=3)
        await sync.start()
        await surface.ready()

        await surface.error("boom 1")
        assert sync.state is SyncState.RELOADING
        await _settle()
        assert sync.state is SyncState.UNINITIALIZED
        assert surface.initialized == 2

        await surface.error("boom 2")
        await _settle()
        assert surface.initialized == 3

        await surface.error("boom 3")
        await _settle()
        return surface, sync

    surface, sync = asyncio.run(run())
    assert sync.state is SyncState.FAILED
    assert sync.attempts == 3
    assert sync.last_error == "boom 3"
    assert surface.initialized == 3


def test_ready_resets_failure_count_and_repushes_snapshot():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()
        await sync.update(user_location=RIDER, markers=MARKERS)

        await surface.error("transient")
        await _settle()
        await surface.ready()
        return surface, sync

    surface, sync = asyncio.run(run())
    assert sync.state is SyncState.READY
    assert sync.attempts == 0
    assert sync.last_error is None
    # The reloaded surface starts blank, so the same snapshot is sent again.
    assert len(surface.pushed) == 2
    assert surface.pushed[0] == surface.pushed[1]


def test_manual_retry_after_failure():
    async def run():
        surface = FakeSurface()
        sync = _sync(surface, max_reload_attempts=1)
        await sync.start()
        await surface.error("fatal")
        assert sync.state is SyncState.FAILED

        # mapReady from a dead surface is ignored until retry().
        await surface.ready()
        assert sync.state is SyncState.FAILED

        await sync.retry()
        assert sync.state is SyncState.UNINITIALIZED
        assert sync.attempts == 0
        await surface.ready()
        return surface, sync

    surface, sync = asyncio.run(run())
    assert sync.state is SyncState.READY
    assert surface.initialized == 2


def test_push_failure_triggers_reload():
    async def run():
        surface = FakeSurface(fail_push=True)
        sync = _sync(surface)
        await sync.start()
        await surface.ready()
        sent = await sync.update(user_location=RIDER)
        return sent, sync.state, sync.push_count, sync.last_error

    sent, state, push_count, last_error = asyncio.run(run())
    assert sent is False
    assert state is SyncState.RELOADING
    assert push_count == 0
    assert "surface went away" in last_error


def test_close_cancels_pending_reload():
    async def run():
        surface = FakeSurface()
        sync = MapStateSynchronizer(surface, SyncSettings(reload_delay_seconds=30.0))
        await sync.start()
        await surface.ready()
        await sync.update(user_location=RIDER, markers=MARKERS)
        await surface.error("boom")
        assert sync.state is SyncState.RELOADING

        await sync.close()
        await _settle()
        sent_after_close = await sync.update(user_location=Coordinate(latitude=1.0, longitude=1.0))
        return surface, sync, sent_after_close

    surface, sync, sent_after_close = asyncio.run(run())
    assert sync.state is SyncState.CLOSED
    assert sync.snapshot is None
    assert sent_after_close is False
    assert surface.initialized == 1
    assert surface.teardowns == 1


class GatedSurface(FakeSurface):
    """Surface whose push suspends until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def push(self, message):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.gate.wait()
            self.pushed.append(message)
        finally:
            self.in_flight -= 1


def test_updates_during_inflight_push_collapse_into_one_followup():
    async def run():
        surface = GatedSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()

        first = asyncio.create_task(sync.update(user_location=Coordinate(latitude=1.0, longitude=1.0)))
        await _settle()
        assert sync.state is SyncState.UPDATING

        for lat in (2.0, 3.0, 4.0):
            assert await sync.update(user_location=Coordinate(latitude=lat, longitude=1.0)) is False

        surface.gate.set()
        sent = await first
        return surface, sync, sent

    surface, sync, sent = asyncio.run(run())
    assert sent is True
    assert sync.state is SyncState.READY
    assert [m.data.user_location.lat for m in surface.pushed] == [1.0, 4.0]
    assert surface.max_in_flight == 1


def test_ready_during_inflight_push_waits_for_it():
    async def run():
        surface = GatedSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()

        pending = asyncio.create_task(sync.update(user_location=RIDER, markers=MARKERS))
        await _settle()
        # The surface reloads while the first push is still in flight.
        await surface.ready()
        await _settle()
        assert surface.max_in_flight == 1
        assert sync.state is SyncState.UPDATING

        surface.gate.set()
        await pending
        return surface, sync

    surface, sync = asyncio.run(run())
    assert surface.max_in_flight == 1
    assert sync.state is SyncState.READY
    # The reloaded surface gets the snapshot again after the in-flight push.
    assert len(surface.pushed) == 2
    assert surface.pushed[0] == surface.pushed[1]


def test_cancelled_push_does_not_wedge_the_synchronizer():
    async def run():
        surface = GatedSurface()
        sync = _sync(surface)
        await sync.start()
        await surface.ready()

        pending = asyncio.create_task(sync.update(user_location=RIDER))
        await _settle()
        pending.cancel()
        try:
            await pending
        except asyncio.CancelledError:
            pass
        state_after_cancel = sync.state

        surface.gate.set()
        sent = await sync.update(user_location=Coordinate(latitude=5.0, longitude=5.0))
        return surface, sync, state_after_cancel, sent

    surface, sync, state_after_cancel, sent = asyncio.run(run())
    assert state_after_cancel is SyncState.READY
    assert sent is True
    assert sync.state is SyncState.READY
    assert [m.data.user_location.lat for m in surface.pushed] == [5.0]
