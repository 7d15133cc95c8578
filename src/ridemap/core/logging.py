"""
Logging setup.

The handler/formatter layout comes from the packaged `ridemap/config/logging.yaml`;
the level comes from settings (`RIDEMAP_LOG_LEVEL`) unless the caller forces one
(the CLI's `--verbose`).
"""

from __future__ import annotations

import copy
import logging.config
from typing import Any

from ridemap.config.settings import get_logging_config, get_settings


def _with_level(config: dict[str, Any], level: str) -> dict[str, Any]:
    config = copy.deepcopy(config)
    config.setdefault("root", {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level
    return config


def configure_logging(level: str | None = None) -> None:
    """Apply the packaged dictConfig at `level` (default: `settings.app.log_level`)."""
    effective = (level or get_settings().app.log_level).upper()
    logging.config.dictConfig(_with_level(get_logging_config(), effective))
