"""HTTP helpers and connectivity status for routing, tiles and status sync."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from PySide6.QtCore import QObject, Signal

from logger import LoggableMixin, LogCategory, get_logger

USER_AGENT = "DispatchNav/1.0 (responder navigation client)"

JsonFetcher = Callable[[str], Dict[str, Any]]
BytesFetcher = Callable[[str], bytes]
JsonPoster = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class NetworkError(RuntimeError):
    """Raised when a remote service cannot be reached or answers badly."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


def _request(url: str, data: Optional[bytes] = None, method: str = "GET",
             content_type: Optional[str] = None) -> Request:
    headers = {"User-Agent": USER_AGENT}
    if content_type:
        headers["Content-Type"] = content_type
    return Request(url, data=data, headers=headers, method=method)


def fetch_bytes(url: str, timeout: float = 10.0) -> bytes:
    """GET ``url`` and return the body; raises :class:`NetworkError`."""
    try:
        with urlopen(_request(url), timeout=timeout) as response:
            status = response.status
            if status != 200:
                raise NetworkError(f"unexpected status code: {status}", status=status)
            body = response.read()
    except HTTPError as exc:
        raise NetworkError(f"HTTP {exc.code} for {url}", status=exc.code) from exc
    except (URLError, OSError) as exc:
        raise NetworkError(str(exc)) from exc
    if not body:
        raise NetworkError("empty response body")
    get_logger().log_network_event("fetch", url=url, status_code=status, size=len(body))
    return body


def fetch_json(url: str, timeout: float = 10.0) -> Dict[str, Any]:
    body = fetch_bytes(url, timeout=timeout)
    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise NetworkError(f"invalid JSON from {url}") from exc


def post_json(url: str, payload: Dict[str, Any], timeout: float = 10.0) -> Dict[str, Any]:
    """POST ``payload`` as JSON; error bodies are parsed when possible."""
    request = _request(url, data=json.dumps(payload).encode("utf-8"), method="POST",
                       content_type="application/json")
    try:
        with urlopen(request, timeout=timeout) as response:
            status = response.getcode()
            body = response.read()
    except HTTPError as exc:
        error_payload = None
        try:
            error_payload = json.loads(exc.read().decode("utf-8")) if exc.fp else None
        except (UnicodeDecodeError, json.JSONDecodeError, OSError):
            error_payload = None
        message = None
        if isinstance(error_payload, dict):
            message = error_payload.get("error")
        raise NetworkError(message or f"HTTP {exc.code} for {url}", status=exc.code,
                           payload=error_payload) from exc
    except (URLError, OSError) as exc:
        raise NetworkError(str(exc)) from exc
    get_logger().log_network_event("post", url=url, status_code=status)
    if not body:
        return {}
    try:
        decoded = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return {}
    return decoded if isinstance(decoded, dict) else {"data": decoded}


class NetworkStatus(QObject, LoggableMixin):
    """Tracks whether the device believes it is online.

    Backed by ``QNetworkInformation`` when a backend is available. Without one
    the status is assumed online, and ``set_online`` may force it either way.
    """

    online_changed = Signal(bool)
    log_category = LogCategory.NETWORK

    def __init__(self, parent: Optional[QObject] = None, use_system_backend: bool = True):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self._online = True
        self._forced: Optional[bool] = None
        self._information = None
        if use_system_backend:
            self._attach_backend()

    def _attach_backend(self) -> None:
        try:
            from PySide6.QtNetwork import QNetworkInformation
        except ImportError as exc:
            self.log_debug("QtNetwork unavailable; assuming online", exception=exc)
            return
        if not QNetworkInformation.loadDefaultBackend():
            self.log_debug("No network information backend; assuming online")
            return
        info = QNetworkInformation.instance()
        if info is None:
            return
        self._information = info
        self._online = self._is_reachable(info.reachability())
        info.reachabilityChanged.connect(self._on_reachability_changed)
        self.log_info("Network status backend attached",
                      backend=info.backendName(), online=self._online)

    @staticmethod
    def _is_reachable(reachability) -> bool:
        from PySide6.QtNetwork import QNetworkInformation
        unknown = QNetworkInformation.Reachability.Unknown
        online = QNetworkInformation.Reachability.Online
        # Unknown means the backend cannot tell, so do not claim offline.
        return reachability in (online, unknown)

    def _on_reachability_changed(self, reachability) -> None:
        self._update(self._is_reachable(reachability))

    def _update(self, online: bool) -> None:
        before = self.is_online()
        self._online = online
        after = self.is_online()
        if before != after:
            self.log_info("Connectivity changed", online=after)
            self.online_changed.emit(after)

    def set_online(self, online: Optional[bool]) -> None:
        """Force the status, or pass ``None`` to follow the system again."""
        before = self.is_online()
        self._forced = online
        after = self.is_online()
        if before != after:
            self.log_info("Connectivity overridden", online=after)
            self.online_changed.emit(after)

    def is_online(self) -> bool:
        if self._forced is not None:
            return self._forced
        return self._online

    __call__ = is_online


__all__ = [
    "NetworkError",
    "NetworkStatus",
    "fetch_bytes",
    "fetch_json",
    "post_json",
]
