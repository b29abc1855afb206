"""
Dispatch Navigator - Responder Navigation Client
Main Application Module
Wires location tracking, routing, tile caching, voice guidance and the map
surface into a single window for responders travelling to an incident.
"""
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QPushButton, QLabel, QStatusBar, QMessageBox, QFrame, QDialog,
)
from PySide6.QtCore import Qt, QTimer, QSettings
from PySide6.QtGui import QFont

from config import (
    NavigationConfig, SETTINGS_APPLICATION, SETTINGS_ORGANIZATION, ensure_valid,
    load_config, load_config_file,
)
from geo import LatLng, format_distance, format_duration
from location_sync import ResponderLocationSync
from location_tracker import LocationTracker
from logger import get_logger, setup_logger, LogCategory
from map_view import INLINE, MODAL, MapView
from navigation import NavigationController, NavigationState
from network import NetworkStatus
from positioning import (
    BasePositionSource, PermissionState, SimulatedPositionSource, create_default_source,
    has_positioning_backend,
)
from route_cache import RouteService
from speech import VoiceAnnouncer, create_synthesizer
from tile_cache import TileCache
from workers import ThreadPoolDispatcher

APP_NAME = "Dispatch Navigator"
APP_VERSION = "1.0.0"


@dataclass
class NavigationServices:
    """The non-visual components of one navigation session."""
    config: NavigationConfig
    network: NetworkStatus
    dispatcher: object
    tracker: LocationTracker
    route_service: RouteService
    tile_cache: TileCache
    announcer: VoiceAnnouncer
    controller: NavigationController
    sync: Optional[ResponderLocationSync] = None

    def shutdown(self):
        self.controller.stop_navigation()
        self.tracker.stop_tracking()
        if self.sync is not None:
            self.sync.stop()
        wait = getattr(self.dispatcher, "wait_for_done", None)
        if wait is not None:
            wait(2000)


def create_services(config: NavigationConfig, source: Optional[BasePositionSource] = None,
                    dispatcher=None, network: Optional[NetworkStatus] = None,
                    synthesizer=None, permission_query=None) -> NavigationServices:
    """Build and connect tracker, routing, tiles, voice and status sync."""
    network = network or NetworkStatus()
    dispatcher = dispatcher or ThreadPoolDispatcher()
    sync = None
    if config.responder_id and config.status_api_base_url:
        sync = ResponderLocationSync(config.responder_id, config, dispatcher=dispatcher)
    tracker_kwargs = {}
    if permission_query is not None:
        tracker_kwargs["permission_query"] = permission_query
    tracker = LocationTracker(
        source, config,
        notifier=sync.handle_message if sync is not None else None,
        **tracker_kwargs,
    )
    route_service = RouteService(config, is_online=network.is_online)
    tile_cache = TileCache(config, dispatcher=dispatcher)
    announcer = VoiceAnnouncer(synthesizer, config.speech_min_interval_s)
    controller = NavigationController(route_service, announcer, dispatcher, config, tracker)
    return NavigationServices(config, network, dispatcher, tracker, route_service,
                              tile_cache, announcer, controller, sync)


class MapDialog(QDialog):
    """Hosts a map in a modal dialog, using the modal render context."""
    def __init__(self, tile_cache: TileCache, config: NavigationConfig, is_online, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Navigation Map")
        self.setMinimumSize(640, 480)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        self.map_view = MapView(tile_cache, MODAL, config, is_online, self)
        layout.addWidget(self.map_view)


class NavigationWindow(QMainWindow):
    """Main window: header controls, map surface and status bar."""
    def __init__(self, services: NavigationServices, render_context: str = INLINE,
                 destination: Optional[LatLng] = None, destination_name: str = "",
                 severity: Optional[str] = None, settings: Optional[QSettings] = None,
                 parent=None):
        super().__init__(parent)
        self.setWindowTitle(f"{APP_NAME} - Responder Navigation")
        self.setMinimumSize(900, 640)
        self.services = services
        self.render_context = render_context
        self.destination = destination
        self.destination_name = destination_name or "incident"
        self.severity = severity
        self.settings = settings or QSettings(SETTINGS_ORGANIZATION, SETTINGS_APPLICATION)
        self.logger = get_logger()
        self.map_views: List[MapView] = []
        self.map_dialog: Optional[MapDialog] = None
        self.setup_ui()
        self.apply_theme()
        self.restore_window_state()
        self._connect_services()
        QTimer.singleShot(0, self.services.tracker.initialize)
        self.logger.info("Navigation window initialized", category=LogCategory.SYSTEM,
                         render_context=render_context)

    def setup_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        layout = QVBoxLayout(central_widget)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        self.create_header(layout)
        self.error_banner = QLabel()
        self.error_banner.setObjectName("error_banner")
        self.error_banner.setWordWrap(True)
        self.error_banner.hide()
        layout.addWidget(self.error_banner)
        if self.render_context == INLINE:
            self._add_map_view(MapView(self.services.tile_cache, INLINE, self.services.config,
                                       self.services.network.is_online))
            layout.addWidget(self.map_views[0], 1)
        else:
            placeholder = QLabel("The map opens in a separate dialog.")
            placeholder.setAlignment(Qt.AlignCenter)
            layout.addWidget(placeholder, 1)
        self.status_bar = QStatusBar()
        self.setStatusBar(self.status_bar)
        self.status_bar.showMessage("Requesting location...")

    def create_header(self, layout):
        header = QFrame()
        header.setFixedHeight(72)
        header.setObjectName("header")
        header_layout = QHBoxLayout(header)
        title_label = QLabel(APP_NAME)
        title_label.setFont(QFont("Arial", 18, QFont.Bold))
        title_label.setObjectName("title")
        header_layout.addWidget(title_label)
        self.destination_label = QLabel(self._destination_text())
        self.destination_label.setObjectName("destination")
        header_layout.addWidget(self.destination_label)
        header_layout.addStretch()
        self.navigate_button = QPushButton("Start Navigation")
        self.navigate_button.setObjectName("header_button")
        self.navigate_button.setEnabled(self.destination is not None)
        self.navigate_button.clicked.connect(self.toggle_navigation)
        header_layout.addWidget(self.navigate_button)
        self.voice_button = QPushButton("Voice: Off")
        self.voice_button.setObjectName("header_button")
        self.voice_button.setEnabled(self.services.announcer.available)
        self.voice_button.clicked.connect(self.toggle_voice)
        header_layout.addWidget(self.voice_button)
        self.follow_button = QPushButton("Follow: On")
        self.follow_button.setObjectName("header_button")
        self.follow_button.setCheckable(True)
        self.follow_button.setChecked(True)
        self.follow_button.clicked.connect(self.toggle_follow)
        header_layout.addWidget(self.follow_button)
        self.compass_button = QPushButton("Compass: Off")
        self.compass_button.setObjectName("header_button")
        self.compass_button.setCheckable(True)
        self.compass_button.setToolTip("Rotate the map so the direction of travel points up")
        self.compass_button.clicked.connect(self.toggle_compass)
        header_layout.addWidget(self.compass_button)
        if self.render_context == MODAL:
            map_button = QPushButton("Open Map")
            map_button.setObjectName("header_button")
            map_button.clicked.connect(self.open_map_dialog)
            header_layout.addWidget(map_button)
        layout.addWidget(header)

    def _destination_text(self) -> str:
        if self.destination is None:
            return "No incident selected"
        return f"{self.destination_name} ({self.destination.lat:.5f}, {self.destination.lon:.5f})"

    def _add_map_view(self, view: MapView):
        view.set_destination(self.destination, self.destination_name, self.severity)
        view.set_navigation_state(self.services.controller.state)
        view.set_route(self.services.controller.route)
        view.set_online(self.services.network.is_online())
        location = self.services.tracker.current_location
        if location is not None:
            view.set_location(location)
        view.auto_follow_changed.connect(self._on_auto_follow_changed)
        if self.compass_button.isChecked():
            view.set_compass_rotation(True)
        view.compass_rotation_changed.connect(self._on_compass_rotation_changed)
        self.map_views.append(view)

    def _connect_services(self):
        tracker = self.services.tracker
        controller = self.services.controller
        tracker.location_changed.connect(self._on_location_changed)
        tracker.error_changed.connect(self._on_location_error)
        tracker.permission_changed.connect(self._on_permission_changed)
        controller.state_changed.connect(self._on_navigation_state)
        controller.route_changed.connect(self._on_route_changed)
        controller.instruction_changed.connect(self._refresh_guidance)
        self.services.network.online_changed.connect(self._on_online_changed)
        if self.services.sync is not None:
            self.services.sync.sync_failed.connect(
                lambda message: self.status_bar.showMessage(f"Status sync failed: {message}", 5000)
            )
            self.services.sync.set_available(True)

    def open_map_dialog(self):
        if self.map_dialog is None:
            self.map_dialog = MapDialog(self.services.tile_cache, self.services.config,
                                        self.services.network.is_online, self)
            self._add_map_view(self.map_dialog.map_view)
        self.map_dialog.exec()

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------
    def _on_location_changed(self, fix):
        for view in self.map_views:
            view.set_location(fix)
        self._refresh_guidance()
        self.status_bar.showMessage(
            f"Location {fix.latitude:.5f}, {fix.longitude:.5f} (±{fix.accuracy_m:.0f} m)"
        )

    def _on_location_error(self, message: str):
        if not message:
            if self.services.tracker.permission != PermissionState.DENIED:
                self.error_banner.hide()
            return
        if self.services.tracker.permission == PermissionState.DENIED:
            self.error_banner.setText(message)
            self.error_banner.show()
        else:
            self.status_bar.showMessage(message, 8000)

    def _on_permission_changed(self, permission: str):
        if permission == PermissionState.GRANTED:
            self.error_banner.hide()

    def _on_navigation_state(self, state: NavigationState):
        for view in self.map_views:
            view.set_navigation_state(state)
        self.navigate_button.setText("Stop Navigation" if state.is_navigating else "Start Navigation")
        self.voice_button.setText("Voice: On" if state.voice_enabled else "Voice: Off")
        if state.route_summary is not None:
            self.status_bar.showMessage(
                f"{state.route_summary.distance_text} · {state.route_summary.duration_text}"
            )

    def _on_route_changed(self, route):
        for view in self.map_views:
            view.set_route(route)

    def _refresh_guidance(self, *_):
        step = self.services.controller.current_step
        text = step.instruction if step is not None else ""
        for view in self.map_views:
            view.set_instruction(text, self.services.controller.distance_to_next_m)

    def _on_online_changed(self, online: bool):
        for view in self.map_views:
            view.set_online(online)
        if not online:
            self.status_bar.showMessage("Offline: showing cached tiles and direct routes", 5000)

    def _on_auto_follow_changed(self, enabled: bool):
        self.follow_button.setChecked(enabled)
        self.follow_button.setText("Follow: On" if enabled else "Follow: Off")

    def _on_compass_rotation_changed(self, enabled: bool):
        self.compass_button.setChecked(enabled)
        self.compass_button.setText("Compass: On" if enabled else "Compass: Off")

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def toggle_navigation(self):
        controller = self.services.controller
        if controller.state.is_navigating:
            controller.log_user_action("stop_navigation")
            controller.stop_navigation()
        elif self.destination is not None:
            controller.log_user_action("start_navigation", {"name": self.destination_name})
            controller.start_navigation(self.destination, self.destination_name)

    def toggle_voice(self):
        self.services.controller.toggle_voice()

    def toggle_follow(self):
        enabled = self.follow_button.isChecked()
        for view in self.map_views:
            view.set_auto_follow(enabled)
        self._on_auto_follow_changed(enabled)

    def toggle_compass(self):
        enabled = self.compass_button.isChecked()
        for view in self.map_views:
            view.set_compass_rotation(enabled)
        self._on_compass_rotation_changed(enabled)

    def apply_theme(self):
        style = """
        QMainWindow {
            background-color: #111827;
            color: white;
        }
        QFrame#header {
            background: qlineargradient(x1:0, y1:0, x2:1, y2:0,
                stop:0 #b91c1c, stop:1 #111827);
            border-bottom: 2px solid #7f1d1d;
        }
        QLabel#title {
            color: white;
            font-size: 18px;
            font-weight: bold;
        }
        QLabel#destination {
            color: #e5e7eb;
            font-size: 13px;
            padding-left: 12px;
        }
        QLabel#error_banner {
            background-color: #fee2e2;
            color: #991b1b;
            border-bottom: 1px solid #fca5a5;
            padding: 10px 16px;
            font-size: 13px;
        }
        QPushButton#header_button {
            background-color: rgba(255, 255, 255, 0.1);
            border: 1px solid rgba(255, 255, 255, 0.2);
            border-radius: 8px;
            padding: 8px 16px;
            color: white;
            font-size: 14px;
        }
        QPushButton#header_button:hover {
            background-color: rgba(255, 255, 255, 0.2);
        }
        QPushButton#header_button:disabled {
            color: rgba(255, 255, 255, 0.4);
        }
        QStatusBar {
            background-color: #1f2937;
            color: #d1d5db;
        }
        """
        self.setStyleSheet(style)

    def closeEvent(self, event):
        self.save_window_state()
        self.services.shutdown()
        event.accept()

    def save_window_state(self):
        self.settings.setValue("geometry", self.saveGeometry())
        self.settings.setValue("windowState", self.saveState())

    def restore_window_state(self):
        geometry = self.settings.value("geometry")
        if geometry:
            self.restoreGeometry(geometry)
        state = self.settings.value("windowState")
        if state:
            self.restoreState(state)


def parse_lat_lon(text: str) -> LatLng:
    """Parse ``"lat,lon"``."""
    try:
        lat_text, lon_text = text.split(",", 1)
        point = LatLng(float(lat_text), float(lon_text))
    except ValueError as exc:
        raise ValueError(f"Expected LAT,LON but got {text!r}") from exc
    if not (-90.0 <= point.lat <= 90.0 and -180.0 <= point.lon <= 180.0):
        raise ValueError(f"Coordinates out of range: {text!r}")
    return point


def build_config(config_file: Optional[str] = None) -> NavigationConfig:
    config = load_config()
    if config_file:
        config = load_config_file(Path(config_file), config)
    return ensure_valid(config)


def main(options=None) -> int:
    """Main entry point for the navigation window."""
    log_dir = Path(options.log_dir) if options is not None and options.log_dir else None
    debug = bool(options is not None and options.debug)
    setup_logger("dispatchnav", log_dir, console_level=logging.DEBUG if debug else logging.INFO)
    logger = get_logger()
    logger.info(f"{APP_NAME} {APP_VERSION} starting", category=LogCategory.SYSTEM)
    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)
    app.setOrganizationName(SETTINGS_ORGANIZATION)
    try:
        config = build_config(getattr(options, "config", None))
        destination = parse_lat_lon(options.destination) if getattr(options, "destination", None) else None
        simulate = getattr(options, "simulate", None)
        permission_query = None
        if simulate:
            source = SimulatedPositionSource.from_feed(simulate, interval_ms=1000)
            permission_query = lambda: None
        elif has_positioning_backend():
            source = create_default_source()
        else:
            source = None
        synthesizer = create_synthesizer(config.speech_rate, config.speech_pitch, config.speech_volume)
        services = create_services(config, source, synthesizer=synthesizer,
                                   permission_query=permission_query)
        if getattr(options, "offline", False):
            services.network.set_online(False)
        window = NavigationWindow(
            services,
            render_context=MODAL if getattr(options, "modal", False) else INLINE,
            destination=destination,
            destination_name=getattr(options, "name", "") or "",
            severity=getattr(options, "severity", None),
        )
        window.show()
        if destination is not None and getattr(options, "navigate", False):
            QTimer.singleShot(0, window.toggle_navigation)
        exit_code = app.exec()
        logger.info(f"{APP_NAME} exited with code: {exit_code}", category=LogCategory.SYSTEM)
        return exit_code
    except Exception as e:
        logger.critical(f"Critical error starting {APP_NAME}", exception=e)
        QMessageBox.critical(None, "Critical Error",
                             f"Failed to start {APP_NAME}:\n{e}\n\nCheck logs for details.")
        return 1


def describe_route(route) -> List[str]:
    """Plain-text summary lines for a route, used by the command line."""
    lines = [
        f"Route {route.key} ({route.source.value})",
        f"Distance: {route.distance_m / 1000:.1f} km",
    ]
    if route.duration_s:
        lines.append(f"Duration: {format_duration(route.duration_s)}")
    for index, step in enumerate(route.steps, start=1):
        suffix = f" ({format_distance(step.distance_m)})" if step.distance_m else ""
        lines.append(f"{index:>3}. {step.instruction}{suffix}")
    return lines


if __name__ == "__main__":
    sys.exit(main())
