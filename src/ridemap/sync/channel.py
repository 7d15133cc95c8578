"""
JSON message channel between the synchronizer and a remote rendering surface.

`MessageChannel` is an ordered, bidirectional queue pair carrying JSON text:
outbound (server -> surface) and inbound (surface -> server). It is transport
agnostic; the API bridges it to a WebSocket, tests drive it directly.

`ChannelSurface` adapts a channel to the `RenderingSurface` interface. It dispatches
inbound `mapReady` / `mapError` / `updateContext` messages to registered callbacks
and sends `updateMap` snapshots outbound.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, TypeAdapter, ValidationError

from ridemap.domain.models import (
    ContextUpdate,
    InboundMessage,
    MapErrorMessage,
    MapReadyMessage,
    OutboundMessage,
    ReloadMessage,
    UpdateContextMessage,
    UpdateMapMessage,
)
from ridemap.sync.surface import ErrorCallback, ReadyCallback, SurfaceUnavailableError

logger = logging.getLogger(__name__)

ContextCallback = Callable[[ContextUpdate], Awaitable[None]]

_INBOUND_ADAPTER: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
_CLOSED = object()


class ChannelClosedError(RuntimeError):
    """Raised when using a channel after `close()`."""


def encode_message(message: BaseModel) -> str:
    return message.model_dump_json(by_alias=True)


def parse_inbound(text: str | bytes) -> InboundMessage:
    """Decode one inbound message.

    Raises:
        ValueError: If the text is not JSON or not a known message shape.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Inbound message is not valid JSON: {exc}") from exc
    try:
        return _INBOUND_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise ValueError(f"Unrecognized inbound message: {exc.errors()[0].get('msg')}") from exc


class MessageChannel:
    """Two FIFO queues of JSON text, one per direction."""

    def __init__(self) -> None:
        self._outbound: asyncio.Queue[object] = asyncio.Queue()
        self._inbound: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: OutboundMessage) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot send on a closed channel.")
        await self._outbound.put(encode_message(message))

    async def next_outbound(self) -> str:
        return await self._take(self._outbound)

    def deliver(self, text: str) -> None:
        if self._closed:
            raise ChannelClosedError("Cannot deliver on a closed channel.")
        self._inbound.put_nowait(text)

    async def receive_text(self) -> str:
        return await self._take(self._inbound)

    def drain_inbound(self) -> int:
        """Discard inbound messages that were not consumed yet; returns how many."""
        dropped = 0
        while True:
            try:
                item = self._inbound.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            if item is _CLOSED:
                self._inbound.put_nowait(_CLOSED)
                return dropped
            dropped += 1

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._outbound.put_nowait(_CLOSED)
        self._inbound.put_nowait(_CLOSED)

    @staticmethod
    async def _take(queue: asyncio.Queue[object]) -> str:
        item = await queue.get()
        if item is _CLOSED:
            # Leave the marker in place so every other waiter wakes up too.
            queue.put_nowait(_CLOSED)
            raise ChannelClosedError("Channel closed.")
        return str(item)


class ChannelSurface:
    """`RenderingSurface` whose transport is a `MessageChannel`."""

    def __init__(self, channel: MessageChannel):
        self._channel = channel
        self._ready_callback: ReadyCallback | None = None
        self._error_callback: ErrorCallback | None = None
        self._context_callback: ContextCallback | None = None
        self._pump: asyncio.Task[None] | None = None
        self._initialized_count = 0

    @property
    def is_open(self) -> bool:
        return self._pump is not None and not self._pump.done()

    def on_ready(self, callback: ReadyCallback) -> None:
        self._ready_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callback = callback

    def on_context(self, callback: ContextCallback) -> None:
        self._context_callback = callback

    async def initialize(self) -> None:
        if self._channel.closed:
            raise SurfaceUnavailableError("Channel is closed; surface cannot be initialized.")
        if self.is_open:
            return

        dropped = self._channel.drain_inbound()
        if dropped:
            logger.debug("Dropped %s stale inbound messages from the previous surface session", dropped)
        if self._initialized_count:
            await self._channel.send(ReloadMessage())
        self._initialized_count += 1
        self._pump = asyncio.create_task(self._run_pump())

    async def push(self, message: UpdateMapMessage) -> None:
        if not self.is_open:
            raise SurfaceUnavailableError("Surface is not initialized.")
        try:
            await self._channel.send(message)
        except ChannelClosedError as exc:
            raise SurfaceUnavailableError(str(exc)) from exc

    async def teardown(self) -> None:
        pump, self._pump = self._pump, None
        if pump is None or pump.done():
            return
        pump.cancel()
        if pump is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await pump

    async def _run_pump(self) -> None:
        while True:
            try:
                text = await self._channel.receive_text()
            except ChannelClosedError:
                return
            try:
                message = parse_inbound(text)
            except ValueError as exc:
                logger.warning("Ignoring malformed surface message: %s", exc)
                continue
            await self._dispatch(message)

    async def _dispatch(self, message: InboundMessage) -> None:
        if isinstance(message, MapReadyMessage):
            logger.info("Rendering surface is ready")
            if self._ready_callback:
                await self._ready_callback()
        elif isinstance(message, MapErrorMessage):
            logger.error("Rendering surface reported an error: %s", message.error)
            if self._error_callback:
                await self._error_callback(message.error)
        elif isinstance(message, UpdateContextMessage):
            if self._context_callback:
                await self._context_callback(message.data)
