from __future__ import annotations

import pytest

from ridemap.config.settings import _apply_env_overrides, get_logging_config, get_settings


def test_default_settings_match_packaged_yaml():
    # Settings are cached; never mutate this instance in tests.
    settings = get_settings()

    assert settings.pricing.per_minute_rate == 0.5
    assert settings.mapping.markers.max_offset_deg == 0.005
    assert settings.mapping.region.padding_factor == 1.3
    assert settings.sync.coordinate_precision == 6
    assert settings.sync.max_reload_attempts == 3
    assert settings.routing.hoist_destination_leg is False
    assert settings.routing.primary.mode == "drive"


def test_env_overrides_inject_api_keys_and_driver_source(monkeypatch):
    monkeypatch.setenv("GEOAPIFY_API_KEY", "geo-key")
    monkeypatch.setenv("OPENROUTESERVICE_API_KEY", "ors-key")
    monkeypatch.setenv("RIDEMAP_DRIVERS_URL", "https://example.test/drivers")
    monkeypatch.setenv("RIDEMAP_LOG_LEVEL", "DEBUG")

    data = _apply_env_overrides({"routing": {"primary": {"mode": "drive"}}})

    assert data["routing"]["primary"] == {"mode": "drive", "api_key": "geo-key"}
    assert data["routing"]["fallback"]["api_key"] == "ors-key"
    assert data["drivers"]["source_url"] == "https://example.test/drivers"
    assert data["app"]["log_level"] == "DEBUG"


def test_config_path_replaces_packaged_defaults(monkeypatch, tmp_path):
    cfg = tmp_path / "ridemap.yaml"
    cfg.write_text("pricing:\n  per_minute_rate: 1.25\nsync:\n  max_reload_attempts: 5\n", encoding="utf-8")
    monkeypatch.setenv("RIDEMAP_CONFIG_PATH", str(cfg))

    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.pricing.per_minute_rate == 1.25
        assert settings.sync.max_reload_attempts == 5
        # Unspecified sections keep model defaults.
        assert settings.mapping.region.padding_factor == 1.3
    finally:
        get_settings.cache_clear()


def test_invalid_values_are_rejected(monkeypatch, tmp_path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("sync:\n  max_reload_attempts: 0\n", encoding="utf-8")
    monkeypatch.setenv("RIDEMAP_CONFIG_PATH", str(cfg))

    get_settings.cache_clear()
    try:
        with pytest.raises(ValueError):
            get_settings()
    finally:
        get_settings.cache_clear()


def test_logging_config_is_a_dict_config():
    config = get_logging_config()

    assert config["version"] == 1
    assert "console" in config["handlers"]
