"""
Rendering surface capability interface.

A rendering surface is whatever actually draws the map: a native map view, an
embedded web map, or a remote client on the other end of a WebSocket. The
synchronizer only relies on this interface, so concrete surfaces are interchangeable.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from ridemap.domain.models import UpdateMapMessage

ReadyCallback = Callable[[], Awaitable[None]]
ErrorCallback = Callable[[str], Awaitable[None]]


class SurfaceUnavailableError(RuntimeError):
    """Raised when pushing to a surface that is not initialized."""


class RenderingSurface(Protocol):
    async def initialize(self) -> None: ...

    async def push(self, message: UpdateMapMessage) -> None: ...

    def on_ready(self, callback: ReadyCallback) -> None: ...

    def on_error(self, callback: ErrorCallback) -> None: ...

    async def teardown(self) -> None: ...
