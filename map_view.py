"""Map surface: tiles, route polyline, markers and guidance overlays.

The widget only draws. Routing, guidance and tracking happen elsewhere and
push their results in through the ``set_*`` methods. Whether the map is
hosted inline or inside a modal dialog is passed in explicitly as the render
context.
"""
import math
from typing import Dict, List, Optional, Sequence, Tuple

from PySide6.QtCore import Qt, QPointF, QRectF, Signal
from PySide6.QtGui import QBrush, QColor, QFont, QPainter, QPen, QPixmap, QPolygonF
from PySide6.QtWidgets import QWidget

from config import NavigationConfig
from geo import (
    LatLng, TILE_SIZE, MAX_TILE_ZOOM, bearing_to_compass, fit_zoom, format_distance,
    midpoint, pixel_to_coordinate, world_pixel,
)
from logger import LoggableMixin, LogCategory
from positioning import LocationFix
from route_cache import CachedRoute
from tile_cache import TileCache

INLINE = "inline"
MODAL = "modal"
RENDER_CONTEXTS = (INLINE, MODAL)

SEVERITY_COLORS = {
    "high": "#ef4444",
    "medium": "#f97316",
    "low": "#22c55e",
}
DEFAULT_MARKER_COLOR = "#3b82f6"
ROUTE_COLOR = "#3b82f6"
ROUTE_WIDTH = 4
ROUTE_OPACITY = 0.7
MIN_ACCURACY_RADIUS_M = 10.0
COMPASS_RADIUS = 34


def severity_color(severity: Optional[str]) -> str:
    """Destination marker colour for an incident severity."""
    if not severity:
        return DEFAULT_MARKER_COLOR
    return SEVERITY_COLORS.get(str(severity).strip().lower(), DEFAULT_MARKER_COLOR)


def view_zoom(render_context: str, config: Optional[NavigationConfig] = None) -> int:
    config = config or NavigationConfig()
    if render_context not in RENDER_CONTEXTS:
        raise ValueError(f"render_context must be one of {RENDER_CONTEXTS}, got {render_context!r}")
    return config.modal_zoom if render_context == MODAL else config.inline_zoom


def view_object_name(render_context: str) -> str:
    return "modal-map" if render_context == MODAL else "fullscreen-map"


def meters_per_pixel(latitude: float, zoom: float) -> float:
    return 156543.03392 * math.cos(math.radians(latitude)) / (2 ** zoom)


def rotate_offset(dx: float, dy: float, degrees: float) -> Tuple[float, float]:
    """Turn a screen offset clockwise by ``degrees`` (screen y grows downwards)."""
    rad = math.radians(degrees)
    return (dx * math.cos(rad) - dy * math.sin(rad),
            dx * math.sin(rad) + dy * math.cos(rad))


class MapView(QWidget, LoggableMixin):
    """Draws the responder, the incident and the route over OSM tiles."""

    auto_follow_changed = Signal(bool)
    compass_rotation_changed = Signal(bool)
    log_category = LogCategory.TILES

    def __init__(self, tile_cache: TileCache, render_context: str = INLINE,
                 config: Optional[NavigationConfig] = None, is_online=None, parent=None):
        QWidget.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.config = config or tile_cache.config
        self.tile_cache = tile_cache
        self.render_context = render_context
        self.base_zoom = view_zoom(render_context, self.config)
        self.zoom = self.base_zoom
        self.is_online = is_online or (lambda: True)
        self.center: Optional[LatLng] = None
        self.location: Optional[LocationFix] = None
        self.destination: Optional[LatLng] = None
        self.destination_name = ""
        self.severity: Optional[str] = None
        self.route_coordinates: List[LatLng] = []
        self.is_navigating = False
        self.bearing_deg = 0.0
        self.distance_text = ""
        self.duration_text = ""
        self.instruction = ""
        self.distance_to_next_m: Optional[float] = None
        self.auto_follow = True
        self.compass_rotation = False
        self._rotation_settled = False
        self._offline = not self.is_online()
        self._pixmaps: Dict[str, QPixmap] = {}
        self._drag_origin: Optional[QPointF] = None
        self.setObjectName(view_object_name(render_context))
        self.setProperty("renderContext", render_context)
        self.setMinimumSize(320, 240)
        tile_cache.tile_stored.connect(self._on_tile_stored)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_location(self, fix: LocationFix):
        self.location = fix
        if self.is_online():
            self.tile_cache.preload_tiles(fix.position, self.zoom, self.config.tile_preload_radius)
        self._auto_enable_rotation()
        self._recenter()

    def set_destination(self, destination: Optional[LatLng], name: str = "",
                        severity: Optional[str] = None):
        self.destination = destination
        self.destination_name = name
        self.severity = severity
        self._recenter()

    def set_route(self, route: Optional[CachedRoute]):
        self.route_coordinates = list(route.coordinates) if route is not None else []
        self.update()

    def set_navigation_state(self, state):
        self.is_navigating = state.is_navigating
        self.bearing_deg = state.bearing_deg
        summary = state.route_summary
        self.distance_text = summary.distance_text if summary else ""
        self.duration_text = summary.duration_text if summary else ""
        if not state.is_navigating:
            self.instruction = ""
            self.distance_to_next_m = None
            self._rotation_settled = False
        if state.destination is not None:
            self.destination = state.destination
            self.destination_name = state.destination_name
        self._auto_enable_rotation()
        self._recenter()

    def set_instruction(self, instruction: str, distance_to_next_m: Optional[float] = None):
        self.instruction = instruction
        self.distance_to_next_m = distance_to_next_m
        self.update()

    def set_online(self, online: bool):
        if self._offline == (not online):
            return
        self._offline = not online
        self.log_info("Map connectivity changed", offline=self._offline,
                      context=self.render_context)
        self.update()

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def heading(self) -> Optional[float]:
        return self.location.heading_deg if self.location is not None else None

    @property
    def map_rotation(self) -> float:
        """Degrees the map layers are turned; the heading points up while rotation is on."""
        if not self.compass_rotation or self.heading is None:
            return 0.0
        return -self.heading

    def compass_needle_angle(self) -> Optional[float]:
        """Screen angle of the travel direction, clockwise from up."""
        if self.heading is None:
            return None
        return (self.heading + self.map_rotation) % 360.0

    def set_compass_rotation(self, enabled: bool):
        self._rotation_settled = True
        if enabled == self.compass_rotation:
            return
        self.compass_rotation = enabled
        self.log_debug("Compass rotation changed", enabled=enabled, context=self.render_context)
        self.compass_rotation_changed.emit(enabled)
        self.update()

    def _auto_enable_rotation(self):
        # Once per trip, as soon as navigation has a heading; a manual toggle wins.
        if self.is_navigating and not self._rotation_settled and self.heading is not None:
            self.set_compass_rotation(True)

    def set_auto_follow(self, enabled: bool):
        if enabled == self.auto_follow:
            return
        self.auto_follow = enabled
        self.auto_follow_changed.emit(enabled)
        self._recenter()

    # ------------------------------------------------------------------
    # Viewport
    # ------------------------------------------------------------------
    def _recenter(self):
        if self.location is not None and self.is_navigating and self.auto_follow:
            self.center = self.location.position
            self.zoom = self.base_zoom
        elif self.location is not None and self.destination is not None and self.auto_follow:
            width, height = max(self.width(), 1), max(self.height(), 1)
            self.zoom = min(self.base_zoom, fit_zoom(self.location.position, self.destination,
                                                     width, height, self.config.fit_padding_px))
            self.center = midpoint(self.location.position, self.destination)
        elif self.center is None:
            self.center = self.location.position if self.location else self.destination
        self.update()

    def to_screen(self, point: LatLng) -> QPointF:
        cx, cy = world_pixel(self.center.lat, self.center.lon, self.zoom)
        px, py = world_pixel(point.lat, point.lon, self.zoom)
        return QPointF(px - cx + self.width() / 2, py - cy + self.height() / 2)

    def screen_point(self, point: LatLng) -> QPointF:
        """Where ``point`` is drawn once the map rotation is applied."""
        raw = self.to_screen(point)
        mid_x, mid_y = self.width() / 2, self.height() / 2
        dx, dy = rotate_offset(raw.x() - mid_x, raw.y() - mid_y, self.map_rotation)
        return QPointF(mid_x + dx, mid_y + dy)

    def visible_tiles(self) -> List[tuple]:
        """``(x, y, screen_x, screen_y)`` for every tile intersecting the widget.

        Screen positions are before rotation. A rotated map needs the tiles
        under the widget's diagonal.
        """
        if self.center is None:
            return []
        cx, cy = world_pixel(self.center.lat, self.center.lon, self.zoom)
        if self.map_rotation:
            half_w = half_h = math.hypot(self.width(), self.height()) / 2
        else:
            half_w, half_h = self.width() / 2, self.height() / 2
        origin_x = cx - self.width() / 2
        origin_y = cy - self.height() / 2
        count = 2 ** self.zoom
        tiles = []
        for tx in range(math.floor((cx - half_w) / TILE_SIZE), math.floor((cx + half_w) / TILE_SIZE) + 1):
            for ty in range(math.floor((cy - half_h) / TILE_SIZE), math.floor((cy + half_h) / TILE_SIZE) + 1):
                if ty < 0 or ty >= count:
                    continue
                tiles.append((tx % count, ty, tx * TILE_SIZE - origin_x, ty * TILE_SIZE - origin_y))
        return tiles

    def _pixmap_for(self, url: str) -> QPixmap:
        pixmap = self._pixmaps.get(url)
        if pixmap is not None:
            return pixmap
        pixmap = QPixmap()
        if url in self.tile_cache:
            pixmap.loadFromData(self.tile_cache.tile_or_placeholder(url))
            self._pixmaps[url] = pixmap
        else:
            # Placeholder pixmaps are not kept so real data replaces them.
            pixmap.loadFromData(self.tile_cache.placeholder)
            if self.is_online():
                self.tile_cache.request_tile(url)
        return pixmap

    def _on_tile_stored(self, url: str):
        self._pixmaps.pop(url, None)
        if len(self._pixmaps) > self.tile_cache.capacity:
            self._pixmaps.clear()
        self.update()

    # ------------------------------------------------------------------
    # Painting
    # ------------------------------------------------------------------
    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing)
        painter.fillRect(self.rect(), QColor("#e5e7eb"))
        if self.center is None:
            painter.setPen(QPen(QColor("#6b7280"), 1))
            painter.setFont(QFont("Arial", 12))
            painter.drawText(self.rect(), Qt.AlignCenter, "Waiting for location...")
            painter.end()
            return
        painter.save()
        rotation = self.map_rotation
        if rotation:
            mid_x, mid_y = self.width() / 2, self.height() / 2
            painter.translate(mid_x, mid_y)
            painter.rotate(rotation)
            painter.translate(-mid_x, -mid_y)
        self._draw_tiles(painter)
        self._draw_route(painter)
        if self.destination is not None:
            self._draw_destination(painter)
        if self.location is not None:
            self._draw_location(painter)
        painter.restore()
        self._draw_compass(painter)
        self._draw_overlays(painter)
        painter.end()

    def _draw_tiles(self, painter: QPainter):
        for x, y, sx, sy in self.visible_tiles():
            url = self.tile_cache.url_for(self.zoom, x, y)
            pixmap = self._pixmap_for(url)
            painter.drawPixmap(QRectF(sx, sy, TILE_SIZE, TILE_SIZE), pixmap,
                               QRectF(pixmap.rect()))

    def _draw_route(self, painter: QPainter):
        if len(self.route_coordinates) < 2:
            return
        painter.save()
        painter.setOpacity(ROUTE_OPACITY)
        pen = QPen(QColor(ROUTE_COLOR), ROUTE_WIDTH)
        pen.setCapStyle(Qt.RoundCap)
        pen.setJoinStyle(Qt.RoundJoin)
        painter.setPen(pen)
        painter.drawPolyline(QPolygonF([self.to_screen(p) for p in self.route_coordinates]))
        painter.restore()

    def _draw_destination(self, painter: QPainter):
        tip = self.to_screen(self.destination)
        color = QColor(severity_color(self.severity))
        painter.setPen(QPen(color.darker(130), 2))
        painter.setBrush(QBrush(color))
        head = QPointF(tip.x(), tip.y() - 28)
        painter.drawPolygon(QPolygonF([tip, QPointF(tip.x() - 9, tip.y() - 22),
                                       QPointF(tip.x() + 9, tip.y() - 22)]))
        painter.drawEllipse(head, 11, 11)
        painter.setBrush(QBrush(QColor("#ffffff")))
        painter.drawEllipse(head, 4, 4)

    def _draw_location(self, painter: QPainter):
        fix = self.location
        point = self.to_screen(fix.position)
        accuracy = max(fix.accuracy_m, MIN_ACCURACY_RADIUS_M)
        radius_px = accuracy / meters_per_pixel(fix.latitude, self.zoom)
        painter.setPen(QPen(QColor(59, 130, 246, 160), 1))
        painter.setBrush(QBrush(QColor(59, 130, 246, 40)))
        painter.drawEllipse(point, radius_px, radius_px)
        if fix.heading_deg is not None:
            painter.save()
            painter.translate(point)
            painter.rotate(fix.heading_deg)
            painter.setPen(Qt.NoPen)
            painter.setBrush(QBrush(QColor("#1d4ed8")))
            painter.drawPolygon(QPolygonF([QPointF(0, -22), QPointF(-7, -8), QPointF(7, -8)]))
            painter.restore()
        painter.setPen(QPen(QColor("#ffffff"), 3))
        painter.setBrush(QBrush(QColor(DEFAULT_MARKER_COLOR)))
        painter.drawEllipse(point, 8, 8)

    def _draw_compass(self, painter: QPainter):
        """Compass rose turned with the map, plus a needle for the travel direction."""
        needle_angle = self.compass_needle_angle()
        if needle_angle is None:
            return
        radius = COMPASS_RADIUS
        center = QPointF(10 + radius, self.height() - 30 - radius)
        painter.save()
        painter.setPen(QPen(QColor("#3d5a8c"), 2))
        painter.setBrush(QBrush(QColor(248, 249, 250, 230)))
        painter.drawEllipse(center, radius, radius)
        painter.setFont(QFont("Arial", 9, QFont.Bold))
        for label, angle in (("N", 0), ("E", 90), ("S", 180), ("W", 270)):
            angle_rad = math.radians(angle + self.map_rotation)
            x = center.x() + radius * 0.72 * math.sin(angle_rad)
            y = center.y() - radius * 0.72 * math.cos(angle_rad)
            painter.setPen(QPen(QColor("#dc3545" if label == "N" else "#2c5aa0"), 2))
            painter.drawText(QRectF(x - 8, y - 8, 16, 16), Qt.AlignCenter, label)
        needle_rad = math.radians(needle_angle)
        needle_length = radius * 0.5
        tip = QPointF(center.x() + needle_length * math.sin(needle_rad),
                      center.y() - needle_length * math.cos(needle_rad))
        painter.setPen(QPen(QColor("#1d4ed8"), 3))
        painter.drawLine(center, tip)
        painter.setPen(QPen(QColor("#111827"), 1))
        painter.setFont(QFont("Arial", 9))
        painter.drawText(QRectF(center.x() - radius, center.y() + radius + 2, radius * 2, 16),
                         Qt.AlignCenter, f"{round(self.heading)}°")
        painter.restore()

    def _draw_panel(self, painter: QPainter, rect: QRectF, lines: Sequence[str],
                    background: str = "#ffffff", foreground: str = "#111827"):
        painter.save()
        painter.setPen(Qt.NoPen)
        painter.setBrush(QBrush(QColor(background)))
        painter.drawRoundedRect(rect, 8, 8)
        painter.setPen(QPen(QColor(foreground), 1))
        y = rect.top() + 22
        for index, line in enumerate(lines):
            painter.setFont(QFont("Arial", 13 if index == 0 else 10,
                                  QFont.Bold if index == 0 else QFont.Normal))
            painter.drawText(QPointF(rect.left() + 12, y), line)
            y += 20
        painter.restore()

    def overlay_lines(self) -> List[str]:
        """Text of the guidance panel, empty when idle."""
        if not self.is_navigating:
            return []
        lines = []
        if self.instruction:
            lines.append(self.instruction)
            if self.distance_to_next_m is not None and self.distance_to_next_m > 0:
                lines.append(f"Next maneuver in {format_distance(self.distance_to_next_m)}")
            else:
                lines.append("Arriving")
        else:
            heading_to = self.destination_name or "destination"
            lines.append(f"Heading to {heading_to}")
        lines.append(f"Bearing {round(self.bearing_deg)}° {bearing_to_compass(self.bearing_deg)}")
        if self.distance_text:
            lines.append(f"{self.distance_text} · {self.duration_text}")
        return lines

    def _draw_overlays(self, painter: QPainter):
        lines = self.overlay_lines()
        if lines:
            width = min(self.width() - 20, 360)
            self._draw_panel(painter, QRectF(10, 10, width, 16 + 20 * len(lines)), lines)
        if self._offline:
            rect = QRectF(self.width() - 130, self.height() - 40, 120, 30)
            painter.save()
            painter.setPen(Qt.NoPen)
            painter.setBrush(QBrush(QColor("#f59e0b")))
            painter.drawRoundedRect(rect, 6, 6)
            painter.setPen(QPen(QColor("#ffffff"), 1))
            painter.setFont(QFont("Arial", 10, QFont.Bold))
            painter.drawText(rect, Qt.AlignCenter, "Offline Mode")
            painter.restore()

    # ------------------------------------------------------------------
    # Interaction
    # ------------------------------------------------------------------
    def mousePressEvent(self, event):
        if event.button() == Qt.LeftButton:
            self._drag_origin = event.position()

    def mouseMoveEvent(self, event):
        if self._drag_origin is None or self.center is None:
            return
        delta = event.position() - self._drag_origin
        self._drag_origin = event.position()
        dx, dy = rotate_offset(delta.x(), delta.y(), -self.map_rotation)
        cx, cy = world_pixel(self.center.lat, self.center.lon, self.zoom)
        self.center = pixel_to_coordinate(cx - dx, cy - dy, self.zoom)
        if self.auto_follow:
            self.auto_follow = False
            self.log_debug("Auto-follow disabled by drag")
            self.auto_follow_changed.emit(False)
        self.update()

    def mouseReleaseEvent(self, event):
        self._drag_origin = None

    def wheelEvent(self, event):
        step = 1 if event.angleDelta().y() > 0 else -1
        self.zoom = max(1, min(MAX_TILE_ZOOM, self.zoom + step))
        self.update()

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self._recenter()


__all__ = [
    "MapView",
    "INLINE",
    "MODAL",
    "severity_color",
    "view_zoom",
    "view_object_name",
    "meters_per_pixel",
    "rotate_offset",
]
