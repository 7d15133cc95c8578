import asyncio
import json

import pytest

from ridemap.config.settings import SyncSettings
from ridemap.domain.models import Coordinate, MapErrorMessage, UpdateContextMessage
from ridemap.sync.channel import ChannelClosedError, ChannelSurface, MessageChannel, parse_inbound
from ridemap.sync.surface import SurfaceUnavailableError
from ridemap.sync.synchronizer import MapStateSynchronizer, SyncState


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


def test_parse_inbound_known_messages():
    assert parse_inbound('{"type": "mapReady"}').type == "mapReady"

    error = parse_inbound(json.dumps({"type": "mapError", "error": {"code": 5}}))
    assert isinstance(error, MapErrorMessage)
    assert isinstance(error.error, str)

    update = parse_inbound(
        json.dumps(
            {
                "type": "updateContext",
                "data": {"rider": {"latitude": 1.0, "longitude": 2.0}, "selectedDriverId": 3},
            }
        )
    )
    assert isinstance(update, UpdateContextMessage)
    assert update.data.rider == Coordinate(latitude=1.0, longitude=2.0)
    assert update.data.selected_driver_id == 3
    assert update.data.model_fields_set == {"rider", "selected_driver_id"}


@pytest.mark.parametrize("text", ["not json", '{"type": "teleport"}', "[]"])
def test_parse_inbound_rejects_unknown_shapes(text):
    with pytest.raises(ValueError):
        parse_inbound(text)


def test_closed_channel_wakes_readers_and_rejects_writers():
    async def run():
        channel = MessageChannel()
        reader = asyncio.create_task(channel.next_outbound())
        await asyncio.sleep(0)
        channel.close()
        with pytest.raises(ChannelClosedError):
            await reader
        with pytest.raises(ChannelClosedError):
            await channel.next_outbound()
        with pytest.raises(ChannelClosedError):
            channel.deliver('{"type": "mapReady"}')

    asyncio.run(run())


def test_push_requires_initialized_surface():
    async def run():
        surface = ChannelSurface(MessageChannel())
        with pytest.raises(SurfaceUnavailableError):
            await surface.push(None)

    asyncio.run(run())


def test_synchronizer_over_channel_round_trip():
    async def run():
        channel = MessageChannel()
        surface = ChannelSurface(channel)
        sync = MapStateSynchronizer(surface, SyncSettings(reload_delay_seconds=0.0))
        await sync.start()
        assert surface.is_open

        channel.deliver("garbage")
        channel.deliver('{"type": "mapReady"}')
        await _settle()
        assert sync.state is SyncState.READY

        await sync.update(user_location=Coordinate(latitude=10.0, longitude=20.0))
        update = json.loads(await channel.next_outbound())

        channel.deliver('{"type": "mapError", "error": "tiles failed"}')
        await _settle()
        reload = json.loads(await channel.next_outbound())
        state_after_reload = sync.state

        await sync.close()
        return update, reload, state_after_reload, surface

    update, reload, state_after_reload, surface = asyncio.run(run())
    assert update["type"] == "updateMap"
    assert update["data"]["userLocation"] == {"lat": 10.0, "lng": 20.0}
    assert reload == {"type": "reload"}
    assert state_after_reload is SyncState.UNINITIALIZED
    assert not surface.is_open


def test_context_messages_reach_callback():
    async def run():
        channel = MessageChannel()
        surface = ChannelSurface(channel)
        seen = []

        async def on_context(update):
            seen.append(update)

        surface.on_context(on_context)
        await surface.initialize()
        channel.deliver('{"type": "updateContext", "data": {"destination": null}}')
        await _settle()
        await surface.teardown()
        return seen

    seen = asyncio.run(run())
    assert len(seen) == 1
    assert seen[0].destination is None
    assert seen[0].model_fields_set == {"destination"}
