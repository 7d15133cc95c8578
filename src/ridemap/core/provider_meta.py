"""
Per-request routing provider metadata.

The routing layer reports what happened to each provider call without threading a
collector through every signature:

    with capture_provider_meta() as meta:
        await calculate_route(...)
    meta.sources  # {"route:geoapify": {"mode": "error", ...}, "route:openrouteservice": {...}}

Keys are `route:<provider>` (mode live/empty/error/fallback) and `estimate:<provider>`
(requested/enriched/dropped/failed). Each entry also counts how often it was recorded.
Outside a capture, recording is a no-op.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

_current: contextvars.ContextVar[ProviderMeta | None] = contextvars.ContextVar(
    "ridemap_provider_meta", default=None
)


@dataclass
class ProviderMeta:
    sources: dict[str, dict[str, Any]] = field(default_factory=dict)

    def record(self, name: str, payload: Mapping[str, Any]) -> None:
        """Merge `payload` into the entry for `name` (latest values win)."""
        entry = self.sources.setdefault(name, {"calls": 0})
        entry.update(payload)
        entry["calls"] += 1


def record_provider_use(name: str, payload: Mapping[str, Any]) -> None:
    meta = _current.get()
    if meta is not None and name:
        meta.record(name, payload)


@contextmanager
def capture_provider_meta() -> Iterator[ProviderMeta]:
    """Collect provider records for the enclosed block.

    A nested capture yields the enclosing recorder, so outer callers still see
    everything recorded further down.
    """
    outer = _current.get()
    if outer is not None:
        yield outer
        return

    meta = ProviderMeta()
    token = _current.set(meta)
    try:
        yield meta
    finally:
        _current.reset(token)
