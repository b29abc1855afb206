"""Runtime configuration for the navigation client.

Values come from three layers, later ones winning: dataclass defaults, the
``navigation/*`` group of :class:`QSettings`, and an optional JSON file given
on the command line.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from PySide6.QtCore import QSettings

from logger import get_logger, LogCategory

SETTINGS_ORGANIZATION = "DispatchNav"
SETTINGS_APPLICATION = "DispatchNav"
SETTINGS_GROUP = "navigation"


class ConfigurationError(ValueError):
    """Raised when configuration values cannot be used."""

    def __init__(self, issues: List["ValidationIssue"]):
        self.issues = issues
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        super().__init__(f"Invalid navigation configuration: {summary}")


@dataclass(frozen=True)
class ValidationIssue:
    """Represents a configuration validation problem."""

    field: str
    title: str
    message: str


@dataclass(frozen=True)
class NavigationConfig:
    """Tunables for tracking, routing, tile caching and guidance."""

    routing_base_url: str = "https://router.project-osrm.org"
    tile_url_template: str = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
    tile_subdomains: Tuple[str, ...] = ("a", "b", "c")
    request_timeout_s: float = 10.0

    idle_distance_threshold_m: float = 5.0
    navigating_distance_threshold_m: float = 3.0
    location_history_size: int = 20
    position_timeout_ms: int = 15000
    position_maximum_age_ms: int = 60000

    route_cache_capacity: int = 100
    route_recompute_interval_s: float = 30.0
    route_throttle_s: float = 30.0

    tile_cache_capacity: int = 1000
    tile_preload_radius: int = 3
    inline_zoom: int = 16
    modal_zoom: int = 14
    fit_padding_px: int = 50

    turn_advance_radius_m: float = 50.0
    announce_radius_m: float = 200.0
    speech_min_interval_s: float = 3.0
    speech_rate: float = 0.9
    speech_pitch: float = 1.1
    speech_volume: float = 0.8

    status_api_base_url: str = ""
    responder_id: str = ""
    status_sync_interval_s: float = 30.0

    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    def distance_threshold(self, navigating: bool) -> float:
        return self.navigating_distance_threshold_m if navigating else self.idle_distance_threshold_m


def _field_types() -> Dict[str, Any]:
    defaults = NavigationConfig()
    return {f.name: getattr(defaults, f.name) for f in fields(NavigationConfig) if f.name != "extra"}


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert ``value`` to the type of ``default``; QSettings hands back strings."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        if isinstance(value, bool):
            raise TypeError(f"{name} expects an integer")
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(str(part) for part in value)
    return str(value)


def config_from_mapping(data: Mapping[str, Any], base: Optional[NavigationConfig] = None) -> NavigationConfig:
    """Overlay ``data`` onto ``base``; unknown keys are kept in ``extra``."""
    base = base or NavigationConfig()
    known = _field_types()
    updates: Dict[str, Any] = {}
    extra = dict(base.extra)
    for key, value in data.items():
        if key not in known:
            extra[key] = value
            continue
        try:
            updates[key] = _coerce(key, value, known[key])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError([
                ValidationIssue(field=key, title="Unreadable Value",
                                message=f"Could not read {value!r}: {exc}")
            ]) from exc
    return replace(base, extra=extra, **updates)


def load_config(settings: Optional[QSettings] = None,
                overrides: Optional[Mapping[str, Any]] = None) -> NavigationConfig:
    """Build a configuration from persisted settings plus explicit overrides."""
    if settings is None:
        settings = QSettings(SETTINGS_ORGANIZATION, SETTINGS_APPLICATION)
    stored: Dict[str, Any] = {}
    settings.beginGroup(SETTINGS_GROUP)
    try:
        for key in settings.childKeys():
            stored[key] = settings.value(key)
    finally:
        settings.endGroup()
    config = config_from_mapping(stored)
    if overrides:
        config = config_from_mapping(overrides, config)
    get_logger().debug("Configuration loaded", category=LogCategory.SYSTEM,
                       stored_keys=sorted(stored), override_keys=sorted(overrides or {}))
    return config


def load_config_file(path: Path, base: Optional[NavigationConfig] = None) -> NavigationConfig:
    """Read a JSON object of configuration values from ``path``."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError([
            ValidationIssue(field="config_file", title="Configuration File Unreadable",
                            message=f"{path}: {exc}")
        ]) from exc
    if not isinstance(data, dict):
        raise ConfigurationError([
            ValidationIssue(field="config_file", title="Configuration File Invalid",
                            message="The configuration file must contain a JSON object.")
        ])
    return config_from_mapping(data, base)


def save_config(config: NavigationConfig, settings: Optional[QSettings] = None) -> None:
    """Persist every known field under the ``navigation`` group."""
    if settings is None:
        settings = QSettings(SETTINGS_ORGANIZATION, SETTINGS_APPLICATION)
    settings.beginGroup(SETTINGS_GROUP)
    try:
        for name in _field_types():
            value = getattr(config, name)
            settings.setValue(name, ",".join(value) if isinstance(value, tuple) else value)
    finally:
        settings.endGroup()
    settings.sync()


def validate_configuration(config: NavigationConfig) -> List[ValidationIssue]:
    """Validate a configuration.

    Returns
    -------
    list[ValidationIssue]
        A collection of validation issues. An empty list denotes success.
    """

    issues: List[ValidationIssue] = []

    if not config.routing_base_url.startswith(("http://", "https://")):
        issues.append(ValidationIssue(
            field="routing_base_url",
            title="Routing Service URL Invalid",
            message="The routing service URL must start with http:// or https://.",
        ))

    template = config.tile_url_template
    if not all(token in template for token in ("{z}", "{x}", "{y}")):
        issues.append(ValidationIssue(
            field="tile_url_template",
            title="Tile URL Template Incomplete",
            message="The tile URL template needs {z}, {x} and {y} placeholders.",
        ))
    if "{s}" in template and not config.tile_subdomains:
        issues.append(ValidationIssue(
            field="tile_subdomains",
            title="Tile Subdomains Missing",
            message="List at least one subdomain when the tile template uses {s}.",
        ))

    for name in ("idle_distance_threshold_m", "navigating_distance_threshold_m"):
        if getattr(config, name) < 0:
            issues.append(ValidationIssue(
                field=name,
                title="Distance Threshold Negative",
                message="Movement thresholds must be zero or more metres.",
            ))

    for name in ("route_cache_capacity", "tile_cache_capacity", "location_history_size"):
        if getattr(config, name) < 1:
            issues.append(ValidationIssue(
                field=name,
                title="Capacity Too Small",
                message="Cache and history sizes must hold at least one entry.",
            ))

    for name in ("route_recompute_interval_s", "route_throttle_s", "status_sync_interval_s",
                 "request_timeout_s"):
        if getattr(config, name) <= 0:
            issues.append(ValidationIssue(
                field=name,
                title="Interval Must Be Positive",
                message="Timer intervals and timeouts must be greater than zero seconds.",
            ))

    for name in ("inline_zoom", "modal_zoom"):
        if not 0 <= getattr(config, name) <= 18:
            issues.append(ValidationIssue(
                field=name,
                title="Zoom Out of Range",
                message="Map zoom levels must be between 0 and 18.",
            ))

    if config.announce_radius_m < config.turn_advance_radius_m:
        issues.append(ValidationIssue(
            field="announce_radius_m",
            title="Announcement Radius Too Small",
            message="Announce instructions from at least as far away as the turn-advance radius.",
        ))

    if not 0.0 <= config.speech_volume <= 1.0:
        issues.append(ValidationIssue(
            field="speech_volume",
            title="Speech Volume Out of Range",
            message="Speech volume must be between 0.0 and 1.0.",
        ))

    if config.responder_id and not config.status_api_base_url:
        issues.append(ValidationIssue(
            field="status_api_base_url",
            title="Status Endpoint Required",
            message="Set the dispatch API base URL so responder locations can be synced.",
        ))

    return issues


def ensure_valid(config: NavigationConfig) -> NavigationConfig:
    issues = validate_configuration(config)
    if issues:
        raise ConfigurationError(issues)
    return config
