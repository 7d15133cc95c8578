"""
Driver listing loader.

The listing is a read-only collection of driver records, either a local JSON file
(default: `data/drivers.json`) or an HTTP endpoint returning the same payload.
Both `[...]` and `{"data": [...]}` shapes are accepted. Records are validated into
typed Pydantic models so marker synthesis can assume a consistent shape.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from pydantic import TypeAdapter

from ridemap.config.settings import Settings, get_settings
from ridemap.core.env import resolve_project_path
from ridemap.core.http import get_json
from ridemap.domain.models import Driver

logger = logging.getLogger(__name__)

_DRIVERS_ADAPTER = TypeAdapter(list[Driver])


@dataclass(frozen=True)
class DriverListing:
    """Result of a driver fetch, including the loading/error flags consumers gate on."""

    drivers: list[Driver] = field(default_factory=list)
    loading: bool = False
    error: str | None = None

    @property
    def available(self) -> bool:
        return not self.loading and self.error is None


def parse_drivers(payload: Any) -> list[Driver]:
    """Validate a listing payload.

    Raises:
        ValueError: If the payload shape is wrong or a record fails validation
            (pydantic's `ValidationError` names the offending record index).
    """
    records = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        raise ValueError("Driver listing must be a list or an object with a 'data' list.")
    return _DRIVERS_ADAPTER.validate_python(records)


def load_drivers(path: str | Path) -> list[Driver]:
    """Load and validate a driver listing JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return parse_drivers(payload)


def fetch_driver_listing(settings: Settings | None = None) -> DriverListing:
    """Fetch the configured driver listing; failures become `DriverListing(error=...)`."""
    settings = settings or get_settings()
    cfg = settings.drivers
    try:
        if cfg.source_url:
            payload = get_json(cfg.source_url, timeout_seconds=settings.app.http_timeout_seconds)
            drivers = parse_drivers(payload)
        else:
            drivers = load_drivers(cfg.path)
    except (httpx.HTTPError, OSError, ValueError) as exc:
        logger.error("Failed to fetch driver listing: %s", exc)
        return DriverListing(error=str(exc))

    logger.info("Loaded %s drivers", len(drivers))
    return DriverListing(drivers=drivers)
