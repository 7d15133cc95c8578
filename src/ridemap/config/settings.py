# src/ridemap/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/ridemap/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `GEOAPIFY_API_KEY`, `OPENROUTESERVICE_API_KEY`)
- an external YAML file via `RIDEMAP_CONFIG_PATH`

Design rule:
- Tuning knobs (fare rate, padding factor, retry ceiling) live in YAML, not hard-coded in business logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from ridemap.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `ridemap.config`."""
    text = resources.files("ridemap.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "ridemap"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class GeoapifySettings(BaseModel):
    base_url: str = "https://api.geoapify.com/v1/routing"
    mode: str = "drive"
    api_key: str | None = None


class OpenRouteServiceSettings(BaseModel):
    base_url: str = "https://api.openrouteservice.org/v2/directions/driving-car"
    api_key: str | None = None


class RoutingSettings(BaseModel):
    primary: GeoapifySettings = Field(default_factory=GeoapifySettings)
    fallback: OpenRouteServiceSettings = Field(default_factory=OpenRouteServiceSettings)
    # Request the rider->destination leg once per batch instead of once per marker.
    hoist_destination_leg: bool = False


class PricingSettings(BaseModel):
    per_minute_rate: float = Field(0.5, ge=0)


class MarkerSettings(BaseModel):
    max_offset_deg: float = Field(0.005, ge=0)


class RegionSettings(BaseModel):
    default_latitude: float = 37.78825
    default_longitude: float = -122.4324
    default_delta: float = Field(0.01, ge=0)
    single_point_delta: float = Field(0.01, ge=0)
    padding_factor: float = Field(1.3, ge=0)


class MappingSettings(BaseModel):
    markers: MarkerSettings = Field(default_factory=MarkerSettings)
    region: RegionSettings = Field(default_factory=RegionSettings)


class SyncSettings(BaseModel):
    coordinate_precision: int = Field(6, ge=0, le=15)
    max_reload_attempts: int = Field(3, ge=1)
    reload_delay_seconds: float = Field(1.0, ge=0)


class DriversSettings(BaseModel):
    path: str = "data/drivers.json"
    source_url: str | None = None


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)
    mapping: MappingSettings = Field(default_factory=MappingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    drivers: DriversSettings = Field(default_factory=DriversSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("RIDEMAP_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    geoapify_key = os.getenv("GEOAPIFY_API_KEY")
    if geoapify_key:
        data.setdefault("routing", {}).setdefault("primary", {})["api_key"] = geoapify_key

    ors_key = os.getenv("OPENROUTESERVICE_API_KEY")
    if ors_key:
        data.setdefault("routing", {}).setdefault("fallback", {})["api_key"] = ors_key

    drivers_path = os.getenv("RIDEMAP_DRIVERS_PATH")
    if drivers_path:
        data.setdefault("drivers", {})["path"] = drivers_path

    drivers_url = os.getenv("RIDEMAP_DRIVERS_URL")
    if drivers_url:
        data.setdefault("drivers", {})["source_url"] = drivers_url

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("RIDEMAP_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
