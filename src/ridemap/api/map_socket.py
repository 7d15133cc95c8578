"""
WebSocket rendering-surface bridge.

`/ws/map` turns the connected client into a rendering surface: the server pushes
`updateMap`, `updateEstimates` (per-driver ETA and fare) and `reload` messages;
the client sends `mapReady`, `mapError` and `updateContext` (rider / destination /
selected driver changes).
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ridemap.config.settings import get_settings
from ridemap.domain.models import ContextUpdate, Marker, UpdateEstimatesMessage
from ridemap.session import MapSession
from ridemap.sync.channel import ChannelClosedError, ChannelSurface, MessageChannel

from . import routes

logger = logging.getLogger(__name__)

router = APIRouter()


async def _forward_outbound(websocket: WebSocket, channel: MessageChannel) -> None:
    while True:
        try:
            text = await channel.next_outbound()
        except ChannelClosedError:
            return
        await websocket.send_text(text)


@router.websocket("/ws/map")
async def map_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    settings = get_settings()
    primary, fallback = routes._providers()

    channel = MessageChannel()
    surface = ChannelSurface(channel)

    async def send_estimates(markers: list[Marker]) -> None:
        await channel.send(UpdateEstimatesMessage.from_markers(markers))

    session = MapSession(
        surface=surface,
        primary=primary,
        fallback=fallback,
        settings=settings,
        on_estimates=send_estimates,
    )

    async def apply_context(update: ContextUpdate) -> None:
        fields = {name: getattr(update, name) for name in update.model_fields_set}
        await session.set_context(**fields)

    surface.on_context(apply_context)
    sender = asyncio.create_task(_forward_outbound(websocket, channel))
    try:
        await session.start()
        await session.set_drivers(await run_in_threadpool(routes._driver_listing))
        while True:
            channel.deliver(await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info("Map surface disconnected")
    finally:
        await session.close()
        channel.close()
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
