"""Filtered stream of responder location fixes.

The tracker sits between a position source and the rest of the client. It
drops fixes that moved less than the active jitter threshold, tags accepted
fixes with the bearing to the current destination and keeps a short history.
Errors become state (``location_error``) instead of exceptions.
"""
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from PySide6.QtCore import QObject, Signal

from config import NavigationConfig
from geo import LatLng, haversine_distance_m, initial_bearing_deg
from logger import LoggableMixin, LogCategory
from positioning import (
    BasePositionSource, LocationFix, PermissionState, PositionErrorCode,
    check_location_permission,
)

Notifier = Callable[[Dict[str, Any]], None]
PermissionQuery = Callable[[], Optional[str]]
PermissionCallback = Callable[[bool], None]

TRACKING_ERROR_MESSAGES = {
    PositionErrorCode.PERMISSION_DENIED: "Location access denied. Please check your device location settings.",
    PositionErrorCode.POSITION_UNAVAILABLE: "Location unavailable. Please check your GPS signal.",
    PositionErrorCode.TIMEOUT: "Location timeout. Please check your GPS signal.",
}
PERMISSION_ERROR_MESSAGES = {
    PositionErrorCode.PERMISSION_DENIED: "Location access denied. Please allow location access in your device settings.",
    PositionErrorCode.POSITION_UNAVAILABLE: "Location unavailable. Please check your GPS signal and try again.",
    PositionErrorCode.TIMEOUT: "Location timeout. Please check your GPS signal and try again.",
}
GENERIC_TRACKING_ERROR = "Location tracking error"
GENERIC_PERMISSION_ERROR = "Location access denied"
PERMISSION_DENIED_SETTINGS = "Location access denied. Please enable location access in your device settings."
NOT_SUPPORTED_ERROR = "Geolocation is not supported on this device"
PERMISSION_REQUEST_FAILED = "Failed to request location permission"


def describe_position_error(code: int, message: str = "", during_permission_request: bool = False) -> str:
    """Map a position error code to the message shown to the responder."""
    table = PERMISSION_ERROR_MESSAGES if during_permission_request else TRACKING_ERROR_MESSAGES
    try:
        return table[PositionErrorCode(code)]
    except (ValueError, KeyError):
        pass
    if message:
        return message
    return GENERIC_PERMISSION_ERROR if during_permission_request else GENERIC_TRACKING_ERROR


class LocationTracker(QObject, LoggableMixin):
    """Watches a position source and publishes thresholded fixes."""

    location_changed = Signal(object)  # LocationFix
    error_changed = Signal(str)  # empty string when cleared
    permission_changed = Signal(str)
    tracking_changed = Signal(bool)
    log_category = LogCategory.GPS

    def __init__(self, source: Optional[BasePositionSource],
                 config: Optional[NavigationConfig] = None,
                 notifier: Optional[Notifier] = None,
                 permission_query: PermissionQuery = check_location_permission,
                 parent: Optional[QObject] = None):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.config = config or NavigationConfig()
        self.source = source
        self.notifier = notifier
        self._permission_query = permission_query
        self._permission = PermissionState.PROMPT
        self._error: Optional[str] = None
        self._current: Optional[LocationFix] = None
        self._last_accepted: Optional[LocationFix] = None
        self._history: Deque[LocationFix] = deque(maxlen=self.config.location_history_size)
        self._tracking = False
        self._navigating = False
        self._destination: Optional[LatLng] = None
        self._pending_request: Optional[PermissionCallback] = None
        if source is not None:
            source.position_updated.connect(self._on_position)
            source.position_error.connect(self._on_error)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def current_location(self) -> Optional[LocationFix]:
        return self._current

    @property
    def location_error(self) -> Optional[str]:
        return self._error

    @property
    def permission(self) -> str:
        return self._permission

    @property
    def history(self) -> Tuple[LocationFix, ...]:
        return tuple(self._history)

    @property
    def is_tracking(self) -> bool:
        return self._tracking

    @property
    def is_navigating(self) -> bool:
        return self._navigating

    @property
    def destination(self) -> Optional[LatLng]:
        return self._destination

    @property
    def distance_threshold(self) -> float:
        return self.config.distance_threshold(self._navigating)

    def set_navigating(self, navigating: bool, destination: Optional[LatLng] = None):
        """Switch between idle and navigation sampling."""
        self._navigating = bool(navigating)
        self._destination = destination if navigating else None

    def _set_error(self, message: Optional[str]):
        if message == self._error:
            return
        self._error = message
        self.error_changed.emit(message or "")

    def _set_permission(self, state: str):
        if state == self._permission:
            return
        self._permission = state
        self.log_info("Location permission changed", permission=state)
        self.permission_changed.emit(state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start_tracking(self):
        """Begin continuous watching, restarting any existing watch."""
        if self.source is None:
            self._set_error(NOT_SUPPORTED_ERROR)
            return
        if self._tracking:
            self.source.stop()
        self._tracking = True
        self.source.start()
        self.log_info("Location tracking started", navigating=self._navigating)
        self.tracking_changed.emit(True)

    def stop_tracking(self):
        """Cancel the watch; later source callbacks are ignored."""
        if not self._tracking:
            return
        self._tracking = False
        if self.source is not None:
            self.source.stop()
        self.log_info("Location tracking stopped")
        self.tracking_changed.emit(False)

    def request_permission(self, callback: Optional[PermissionCallback] = None):
        """Resolve location permission, calling ``callback(granted)`` when known."""
        done = callback or (lambda granted: None)
        if self.source is None:
            self._set_error(NOT_SUPPORTED_ERROR)
            done(False)
            return
        try:
            state = None
            try:
                state = self._permission_query()
            except Exception as exc:
                self.log_warning("Permission check failed", exception=exc)
            if state is not None:
                self._set_permission(state)
                if state == PermissionState.GRANTED:
                    done(True)
                    return
                if state == PermissionState.DENIED:
                    self._set_error(PERMISSION_DENIED_SETTINGS)
                    done(False)
                    return
            # Prompt or no permissions API: asking for one fix triggers the prompt.
            self._pending_request = done
            self.source.request_update(self.config.position_timeout_ms,
                                       self.config.position_maximum_age_ms)
        except Exception as exc:
            self._pending_request = None
            self.log_error("Failed to request location permission", exception=exc)
            self._set_error(PERMISSION_REQUEST_FAILED)
            done(False)

    def initialize(self):
        """Resolve permission and start tracking once it is granted."""
        def on_resolved(granted: bool):
            if granted:
                self.start_tracking()
        self.request_permission(on_resolved)

    # ------------------------------------------------------------------
    # Source callbacks
    # ------------------------------------------------------------------
    def _on_position(self, fix: LocationFix):
        if self._pending_request is not None:
            callback, self._pending_request = self._pending_request, None
            self._set_permission(PermissionState.GRANTED)
            self._accept(self._tag(fix))
            callback(True)
            return
        if not self._tracking:
            return
        fix = self._tag(fix)
        if self._last_accepted is not None:
            moved = haversine_distance_m(
                self._last_accepted.latitude, self._last_accepted.longitude,
                fix.latitude, fix.longitude,
            )
            if not moved > self.distance_threshold:
                self._logger.log_gps_event("fix_filtered", fix.latitude, fix.longitude,
                                           fix.accuracy_m, moved_m=round(moved, 2))
                return
        self._accept(fix)

    def _tag(self, fix: LocationFix) -> LocationFix:
        if self._navigating and self._destination is not None:
            return fix.with_bearing(initial_bearing_deg(
                fix.latitude, fix.longitude, self._destination.lat, self._destination.lon
            ))
        return fix

    def _accept(self, fix: LocationFix):
        self._current = fix
        self._last_accepted = fix
        self._history.append(fix)
        self._set_error(None)
        self._logger.log_gps_event("fix_accepted", fix.latitude, fix.longitude, fix.accuracy_m)
        self.location_changed.emit(fix)
        self._notify(fix)

    def _notify(self, fix: LocationFix):
        if self.notifier is None:
            return
        try:
            self.notifier({"type": "LOCATION_UPDATE", "location": fix.to_dict()})
        except Exception as exc:
            self.log_debug("Location update notification failed", exception=exc)

    def _on_error(self, code: int, message: str):
        if self._pending_request is not None:
            callback, self._pending_request = self._pending_request, None
            self._set_permission(PermissionState.DENIED)
            text = describe_position_error(code, message, during_permission_request=True)
            self.log_warning("Location permission request failed", code=code, reason=message)
            self._set_error(text)
            callback(False)
            return
        if not self._tracking:
            return
        text = describe_position_error(code, message)
        if code == PositionErrorCode.PERMISSION_DENIED:
            self._set_permission(PermissionState.DENIED)
        self.log_warning("Location tracking error", code=code, reason=message)
        self._set_error(text)


__all__ = [
    "LocationTracker",
    "describe_position_error",
    "TRACKING_ERROR_MESSAGES",
    "PERMISSION_ERROR_MESSAGES",
    "NOT_SUPPORTED_ERROR",
]
