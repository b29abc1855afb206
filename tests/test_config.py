"""Tests for configuration loading and validation."""
from __future__ import annotations

import json
from dataclasses import replace

import pytest
from PySide6.QtCore import QSettings

from config import (
    ConfigurationError, NavigationConfig, config_from_mapping, ensure_valid,
    load_config, load_config_file, save_config, validate_configuration,
)


@pytest.fixture()
def settings(tmp_path):
    return QSettings(str(tmp_path / "settings.ini"), QSettings.Format.IniFormat)


def _fields(issues):
    return {issue.field for issue in issues}


def test_defaults_are_valid():
    config = NavigationConfig()
    assert validate_configuration(config) == []
    assert config.distance_threshold(navigating=False) == 5.0
    assert config.distance_threshold(navigating=True) == 3.0
    assert config.route_cache_capacity == 100
    assert config.tile_cache_capacity == 1000


def test_mapping_coerces_strings_and_keeps_unknown_keys():
    config = config_from_mapping({
        "route_cache_capacity": "25",
        "speech_rate": "1.2",
        "tile_subdomains": "x, y",
        "theme": "dark",
    })
    assert config.route_cache_capacity == 25
    assert config.speech_rate == pytest.approx(1.2)
    assert config.tile_subdomains == ("x", "y")
    assert config.extra == {"theme": "dark"}


def test_mapping_reports_unreadable_values():
    with pytest.raises(ConfigurationError) as excinfo:
        config_from_mapping({"inline_zoom": "sixteen"})
    assert excinfo.value.issues[0].field == "inline_zoom"


def test_settings_round_trip(settings):
    custom = replace(NavigationConfig(), modal_zoom=12, routing_base_url="http://localhost:5000")
    save_config(custom, settings)

    loaded = load_config(settings)
    assert loaded.modal_zoom == 12
    assert loaded.routing_base_url == "http://localhost:5000"
    assert loaded.tile_subdomains == ("a", "b", "c")


def test_overrides_win_over_settings(settings):
    save_config(replace(NavigationConfig(), inline_zoom=15), settings)
    loaded = load_config(settings, overrides={"inline_zoom": 17})
    assert loaded.inline_zoom == 17


def test_load_config_file(tmp_path):
    path = tmp_path / "nav.json"
    path.write_text(json.dumps({"responder_id": "unit-7",
                                "status_api_base_url": "https://dispatch.example"}))
    config = load_config_file(path)
    assert config.responder_id == "unit-7"
    assert config.status_api_base_url == "https://dispatch.example"


def test_load_config_file_errors(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config_file(tmp_path / "missing.json")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]")
    with pytest.raises(ConfigurationError) as excinfo:
        load_config_file(listing)
    assert excinfo.value.issues[0].title == "Configuration File Invalid"


def test_validation_flags_bad_values():
    config = replace(
        NavigationConfig(),
        routing_base_url="router.local",
        tile_url_template="https://tiles.example/{z}/{x}.png",
        route_cache_capacity=0,
        route_throttle_s=0,
        modal_zoom=21,
        announce_radius_m=10,
        speech_volume=1.5,
        responder_id="unit-7",
    )
    assert _fields(validate_configuration(config)) == {
        "routing_base_url",
        "tile_url_template",
        "route_cache_capacity",
        "route_throttle_s",
        "modal_zoom",
        "announce_radius_m",
        "speech_volume",
        "status_api_base_url",
    }


def test_ensure_valid_raises_with_all_issues():
    config = replace(NavigationConfig(), tile_subdomains=(), inline_zoom=-1)
    with pytest.raises(ConfigurationError) as excinfo:
        ensure_valid(config)
    assert _fields(excinfo.value.issues) == {"tile_subdomains", "inline_zoom"}
    assert ensure_valid(NavigationConfig()) == NavigationConfig()
