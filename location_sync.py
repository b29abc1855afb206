"""Reports the responder's position to the dispatch API while available."""

from typing import Any, Callable, Dict, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from config import NavigationConfig
from logger import LoggableMixin, LogCategory
from network import NetworkError, post_json
from positioning import LocationFix
from workers import ImmediateDispatcher

StatusPoster = Callable[[str, Dict[str, Any]], Dict[str, Any]]

SYNC_FAILED_MESSAGE = "Failed to update location"


class ResponderLocationSync(QObject, LoggableMixin):
    """Posts ``Available`` status with coordinates now and then every interval.

    A new location triggers an immediate post and restarts the interval.
    Failures are reported through ``sync_failed`` and never stop the timer.
    """

    sync_failed = Signal(str)
    synced = Signal(object)  # LocationFix
    log_category = LogCategory.NETWORK

    def __init__(self, responder_id: str, config: Optional[NavigationConfig] = None,
                 poster: Optional[StatusPoster] = None, dispatcher=None,
                 parent: Optional[QObject] = None):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.config = config or NavigationConfig()
        self.responder_id = responder_id
        self.poster: StatusPoster = poster or self._default_poster
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self._available = False
        self._location: Optional[LocationFix] = None
        self._timer = QTimer(self)
        self._timer.setInterval(int(self.config.status_sync_interval_s * 1000))
        self._timer.timeout.connect(self.sync_now)

    def _default_poster(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return post_json(url, payload, timeout=self.config.request_timeout_s)

    @property
    def endpoint(self) -> str:
        return self.config.status_api_base_url.rstrip("/") + "/api/responder/status"

    @property
    def is_active(self) -> bool:
        return self._timer.isActive()

    def set_available(self, available: bool):
        self._available = bool(available)
        self._reschedule()

    def update_location(self, fix: LocationFix):
        self._location = fix
        self._reschedule()

    def handle_message(self, message: Dict[str, Any]):
        """Accept a tracker ``LOCATION_UPDATE`` message."""
        if message.get("type") != "LOCATION_UPDATE":
            return
        self.update_location(LocationFix.from_dict(message["location"]))

    def _reschedule(self):
        self._timer.stop()
        if not self._available or self._location is None:
            return
        self.sync_now()
        self._timer.start()

    def payload(self, fix: LocationFix) -> Dict[str, Any]:
        return {
            "responderId": self.responder_id,
            "status": "Available",
            "latitude": fix.latitude,
            "longitude": fix.longitude,
            "accuracy": fix.accuracy_m,
        }

    def sync_now(self):
        if not self._available or self._location is None:
            return
        fix = self._location
        body = self.payload(fix)

        def on_result(_response):
            self.log_debug("Location synced", latitude=fix.latitude, longitude=fix.longitude)
            self.synced.emit(fix)

        def on_error(exc: BaseException):
            message = str(exc) if isinstance(exc, NetworkError) and str(exc) else SYNC_FAILED_MESSAGE
            self.log_warning("Failed to sync location", exception=exc)
            self.sync_failed.emit(message)

        self.dispatcher.dispatch(lambda: self.poster(self.endpoint, body), on_result, on_error)

    def stop(self):
        self._timer.stop()


__all__ = ["ResponderLocationSync", "SYNC_FAILED_MESSAGE"]
