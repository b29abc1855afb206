"""Position sources feeding the location tracker.

``QtPositionSource`` wraps the platform positioning backend; the simulated
source replays deterministic fixes for demos and tests. Both report errors
with the same three codes the tracker maps to user-facing messages.
"""
import json
import time
from dataclasses import dataclass, asdict, replace
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from PySide6.QtCore import QObject, QTimer, Signal, QCoreApplication

from geo import LatLng
from logger import LoggableMixin, LogCategory


class PositionErrorCode(IntEnum):
    """Position error codes, numbered like the W3C geolocation codes."""
    UNKNOWN = 0
    PERMISSION_DENIED = 1
    POSITION_UNAVAILABLE = 2
    TIMEOUT = 3


class PermissionState:
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


@dataclass(frozen=True)
class LocationFix:
    """A single accepted or raw position report."""
    latitude: float
    longitude: float
    accuracy_m: float = 0.0
    timestamp_ms: int = 0
    heading_deg: Optional[float] = None
    speed_mps: Optional[float] = None
    bearing_to_destination_deg: Optional[float] = None

    @property
    def position(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)

    def with_bearing(self, bearing: Optional[float]) -> "LocationFix":
        return replace(self, bearing_to_destination_deg=bearing)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocationFix":
        if "coordinate" in data:
            data = dict(data["coordinate"], **{k: v for k, v in data.items() if k != "coordinate"})
        latitude = data.get("latitude", data.get("lat"))
        longitude = data.get("longitude", data.get("lon", data.get("lng")))
        if latitude is None or longitude is None:
            raise TypeError("Position entries need latitude and longitude")
        heading = data.get("heading_deg", data.get("heading"))
        speed = data.get("speed_mps", data.get("speed"))
        return cls(
            latitude=float(latitude),
            longitude=float(longitude),
            accuracy_m=float(data.get("accuracy_m", data.get("accuracy", 0.0)) or 0.0),
            timestamp_ms=int(data.get("timestamp_ms", data.get("timestamp", 0)) or 0),
            heading_deg=float(heading) if heading is not None else None,
            speed_mps=float(speed) if speed is not None else None,
        )


def now_ms() -> int:
    return int(time.time() * 1000)


class BasePositionSource(QObject, LoggableMixin):
    """Base class for position sources with common lifecycle management."""
    position_updated = Signal(object)  # LocationFix
    position_error = Signal(int, str)  # PositionErrorCode, message
    log_category = LogCategory.GPS

    def __init__(self, parent: Optional[QObject] = None):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self):
        """Start emitting position updates."""
        if not self._active:
            self._active = True
            self._on_start()

    def stop(self):
        """Stop emitting position updates."""
        if self._active:
            self._active = False
            self._on_stop()

    def request_update(self, timeout_ms: int = 15000, maximum_age_ms: int = 60000):
        """Request a single fix; the answer arrives through the usual signals."""
        raise NotImplementedError

    def _on_start(self):
        raise NotImplementedError

    def _on_stop(self):
        raise NotImplementedError


class SimulatedPositionSource(BasePositionSource):
    """Position source that replays deterministic fixes."""

    def __init__(self, samples: Sequence[LocationFix], interval_ms: Optional[int] = 1000,
                 loop: bool = False, permission_denied: bool = False,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self._samples = list(samples)
        self._loop = loop
        self._index = 0
        self.permission_denied = permission_denied
        self._timer = None if interval_ms is None else QTimer(self)
        if self._timer is not None:
            self._timer.setInterval(interval_ms)
            self._timer.timeout.connect(self._emit_next)

    @property
    def remaining(self) -> int:
        return max(0, len(self._samples) - self._index)

    def _on_start(self):
        if self.permission_denied:
            self.emit_error(PositionErrorCode.PERMISSION_DENIED, "User denied Geolocation")
            return
        if self._index >= len(self._samples):
            self._index = 0
        if self._timer is not None and self._samples:
            self._timer.start()
        if not self._samples:
            self.log_warning("Simulated position source started without samples")
        else:
            self.log_info("Simulated position source started", samples=len(self._samples))

    def _on_stop(self):
        if self._timer is not None:
            self._timer.stop()
        self.log_info("Simulated position source stopped", emitted=self._index)

    def request_update(self, timeout_ms: int = 15000, maximum_age_ms: int = 60000):
        if self.permission_denied:
            self.emit_error(PositionErrorCode.PERMISSION_DENIED, "User denied Geolocation")
            return
        if self._index >= len(self._samples):
            self.emit_error(PositionErrorCode.TIMEOUT, "Timeout expired")
            return
        self._emit_sample()

    def manual_step(self):
        """Emit the next sample immediately (useful for tests)."""
        if self.is_active:
            self._emit_next()

    def push(self, fix: LocationFix):
        """Deliver an arbitrary fix while active."""
        if self.is_active:
            self.position_updated.emit(fix)

    def emit_error(self, code: int, message: str = ""):
        self.log_warning("Simulated position error", code=int(code), reason=message)
        self.position_error.emit(int(code), message)

    def _emit_sample(self):
        fix = self._samples[self._index]
        self._index += 1
        if not fix.timestamp_ms:
            fix = replace(fix, timestamp_ms=now_ms())
        self.position_updated.emit(fix)

    def _emit_next(self):
        if not self._samples:
            return
        if self._index >= len(self._samples):
            if self._loop:
                self._index = 0
            else:
                self.stop()
                return
        self._emit_sample()
        if not self._loop and self._index >= len(self._samples) and self._timer is not None:
            # Timed replay ends after the final sample.
            self.stop()

    @staticmethod
    def from_feed(feed_source: Union[Sequence[LocationFix], Sequence[Dict[str, Any]], Path, str],
                  interval_ms: Optional[int] = 1000, loop: bool = False,
                  parent: Optional[QObject] = None) -> "SimulatedPositionSource":
        """Create a simulated source from fixes, dictionaries or a JSON file."""
        fixes = SimulatedPositionSource._normalize_feed(feed_source)
        return SimulatedPositionSource(fixes, interval_ms=interval_ms, loop=loop, parent=parent)

    @staticmethod
    def _normalize_feed(feed_source) -> List[LocationFix]:
        if isinstance(feed_source, (str, Path)):
            data = json.loads(Path(feed_source).read_text(encoding="utf-8"))
            if isinstance(data, dict):
                data = data.get("points", data.get("fixes", []))
            return SimulatedPositionSource._normalize_feed(data)
        fixes: List[LocationFix] = []
        for entry in feed_source:
            if isinstance(entry, LocationFix):
                fixes.append(entry)
            elif isinstance(entry, dict):
                fixes.append(LocationFix.from_dict(entry))
            elif isinstance(entry, (list, tuple)) and len(entry) >= 2:
                fixes.append(LocationFix(float(entry[0]), float(entry[1])))
            else:
                raise TypeError(
                    "Unsupported feed entry type for simulated position source: "
                    f"{type(entry)!r}"
                )
        return fixes


class QtPositionSource(BasePositionSource):
    """Position source backed by ``QGeoPositionInfoSource``."""

    def __init__(self, update_interval_ms: int = 1000, parent: Optional[QObject] = None):
        super().__init__(parent)
        from PySide6.QtPositioning import QGeoPositionInfoSource
        self._source = QGeoPositionInfoSource.createDefaultSource(self)
        if self._source is None:
            self.log_warning("No platform positioning backend available")
            return
        self._source.setUpdateInterval(update_interval_ms)
        self._source.setPreferredPositioningMethods(
            QGeoPositionInfoSource.PositioningMethod.AllPositioningMethods
        )
        self._source.positionUpdated.connect(self._on_position)
        self._source.errorOccurred.connect(self._on_error)
        self.log_info("Positioning backend ready", backend=self._source.sourceName())

    @property
    def available(self) -> bool:
        return self._source is not None

    def _on_start(self):
        if self._source is None:
            self.position_error.emit(int(PositionErrorCode.POSITION_UNAVAILABLE),
                                     "No positioning backend available")
            return
        self._source.startUpdates()

    def _on_stop(self):
        if self._source is not None:
            self._source.stopUpdates()

    def request_update(self, timeout_ms: int = 15000, maximum_age_ms: int = 60000):
        if self._source is None:
            self.position_error.emit(int(PositionErrorCode.POSITION_UNAVAILABLE),
                                     "No positioning backend available")
            return
        cached = self._source.lastKnownPosition()
        if cached.isValid() and now_ms() - cached.timestamp().toMSecsSinceEpoch() <= maximum_age_ms:
            self.position_updated.emit(self._to_fix(cached))
            return
        self._source.requestUpdate(timeout_ms)

    def _on_position(self, info):
        self.position_updated.emit(self._to_fix(info))

    def _on_error(self, error):
        from PySide6.QtPositioning import QGeoPositionInfoSource
        codes = {
            QGeoPositionInfoSource.Error.AccessError: PositionErrorCode.PERMISSION_DENIED,
            QGeoPositionInfoSource.Error.ClosedError: PositionErrorCode.POSITION_UNAVAILABLE,
            QGeoPositionInfoSource.Error.UpdateTimeoutError: PositionErrorCode.TIMEOUT,
        }
        if error == QGeoPositionInfoSource.Error.NoError:
            return
        code = codes.get(error, PositionErrorCode.UNKNOWN)
        message = getattr(error, "name", str(error))
        self.log_warning("Positioning backend error", code=int(code), error=message)
        self.position_error.emit(int(code), message)

    @staticmethod
    def _to_fix(info) -> LocationFix:
        from PySide6.QtPositioning import QGeoPositionInfo
        attribute = QGeoPositionInfo.Attribute
        coordinate = info.coordinate()

        def optional(attr):
            if not info.hasAttribute(attr):
                return None
            value = info.attribute(attr)
            return None if value != value else value  # NaN means missing

        accuracy = optional(attribute.HorizontalAccuracy)
        timestamp = info.timestamp()
        return LocationFix(
            latitude=coordinate.latitude(),
            longitude=coordinate.longitude(),
            accuracy_m=accuracy if accuracy is not None else 0.0,
            timestamp_ms=timestamp.toMSecsSinceEpoch() if timestamp.isValid() else now_ms(),
            heading_deg=optional(attribute.Direction),
            speed_mps=optional(attribute.GroundSpeed),
        )


def has_positioning_backend() -> bool:
    """Whether the platform offers any positioning plugin."""
    try:
        from PySide6.QtPositioning import QGeoPositionInfoSource
    except ImportError:
        return False
    return bool(QGeoPositionInfoSource.availableSources())


def has_permissions_api() -> bool:
    """Whether runtime permission queries are supported (Qt 6.5+ with an app)."""
    try:
        from PySide6.QtCore import QLocationPermission  # noqa: F401
    except ImportError:
        return False
    app = QCoreApplication.instance()
    return app is not None and hasattr(app, "checkPermission")


def check_location_permission() -> Optional[str]:
    """Query the location permission, or ``None`` without a permissions API."""
    if not has_permissions_api():
        return None
    from PySide6.QtCore import QLocationPermission, Qt
    permission = QLocationPermission()
    permission.setAccuracy(QLocationPermission.Accuracy.Precise)
    status = QCoreApplication.instance().checkPermission(permission)
    if status == Qt.PermissionStatus.Granted:
        return PermissionState.GRANTED
    if status == Qt.PermissionStatus.Denied:
        return PermissionState.DENIED
    return PermissionState.PROMPT


def create_default_source(parent: Optional[QObject] = None) -> BasePositionSource:
    return QtPositionSource(parent=parent)


__all__ = [
    "LocationFix",
    "PositionErrorCode",
    "PermissionState",
    "BasePositionSource",
    "SimulatedPositionSource",
    "QtPositionSource",
    "has_positioning_backend",
    "has_permissions_api",
    "check_location_permission",
    "create_default_source",
]
