"""Navigation state machine: Idle -> Navigating -> Idle.

The controller owns :class:`NavigationState`, keeps the route fresh while
navigating (a forced recomputation every 30 s plus throttled requests on each
accepted fix), advances turn-by-turn guidance and speaks new instructions.
Every route request carries a generation number. A result that arrives after
a newer request, or after navigation stopped, is discarded.
"""
from dataclasses import dataclass, fields, replace
from typing import Optional, Sequence

from PySide6.QtCore import QObject, QTimer, Signal

from config import NavigationConfig
from geo import LatLng, distance_between, format_duration, initial_bearing_deg
from logger import LoggableMixin, LogCategory
from positioning import LocationFix
from route_cache import CachedRoute, RouteService, RouteStep
from speech import VoiceAnnouncer
from workers import ImmediateDispatcher


@dataclass(frozen=True)
class RouteSummary:
    distance_text: str = ""
    duration_text: str = ""
    next_instruction: str = ""

    @classmethod
    def from_route(cls, route: CachedRoute) -> "RouteSummary":
        return cls(
            distance_text=f"{route.distance_m / 1000:.1f} km",
            duration_text=format_duration(route.duration_s),
            next_instruction=route.steps[0].instruction if route.steps else "",
        )


@dataclass(frozen=True)
class NavigationState:
    is_navigating: bool = False
    destination: Optional[LatLng] = None
    destination_name: str = ""
    route_summary: Optional[RouteSummary] = None
    bearing_deg: float = 0.0
    voice_enabled: bool = False

    def idle(self) -> "NavigationState":
        """The idle shape; only the voice preference survives."""
        return NavigationState(voice_enabled=self.voice_enabled)


UPDATABLE_FIELDS = frozenset({"destination_name", "route_summary", "bearing_deg", "voice_enabled"})


def select_current_step(steps: Sequence[RouteStep], location: LatLng,
                        radius_m: float = 50.0) -> Optional[int]:
    """Index of the first step whose maneuver point lies within ``radius_m``."""
    for index, step in enumerate(steps):
        if distance_between(location, step.maneuver_location) < radius_m:
            return index
    return None


class NavigationController(QObject, LoggableMixin):
    """Owns navigation state and keeps route and guidance in sync with location."""

    state_changed = Signal(object)  # NavigationState
    route_changed = Signal(object)  # CachedRoute or None
    instruction_changed = Signal(str)
    log_category = LogCategory.NAVIGATION

    def __init__(self, route_service: RouteService,
                 announcer: Optional[VoiceAnnouncer] = None,
                 dispatcher=None,
                 config: Optional[NavigationConfig] = None,
                 tracker=None,
                 parent: Optional[QObject] = None):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.config = config or route_service.config
        self.route_service = route_service
        self.announcer = announcer or VoiceAnnouncer(None, self.config.speech_min_interval_s)
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self.tracker = tracker
        self._state = NavigationState()
        self.announcer.enabled = self._state.voice_enabled
        self._location: Optional[LocationFix] = None
        self._route: Optional[CachedRoute] = None
        self._generation = 0
        self._in_flight: Optional[int] = None
        self._current_step_index: Optional[int] = None
        self._distance_to_next_m: Optional[float] = None
        self._last_spoken_instruction = ""
        self._recompute_timer = QTimer(self)
        self._recompute_timer.setInterval(int(self.config.route_recompute_interval_s * 1000))
        self._recompute_timer.timeout.connect(self._on_recompute_timer)
        if tracker is not None:
            tracker.location_changed.connect(self.on_location_changed)
            if tracker.current_location is not None:
                self._location = tracker.current_location

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def state(self) -> NavigationState:
        return self._state

    @property
    def route(self) -> Optional[CachedRoute]:
        return self._route

    @property
    def location(self) -> Optional[LocationFix]:
        return self._location

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def current_step(self) -> Optional[RouteStep]:
        if self._route is None or self._current_step_index is None:
            return None
        return self._route.steps[self._current_step_index]

    @property
    def distance_to_next_m(self) -> Optional[float]:
        return self._distance_to_next_m

    @property
    def recompute_timer_active(self) -> bool:
        return self._recompute_timer.isActive()

    def _set_state(self, state: NavigationState):
        if state == self._state:
            return
        self._state = state
        self.state_changed.emit(state)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start_navigation(self, destination: LatLng, name: str):
        """Enter (or re-enter) Navigating towards ``destination``."""
        self._generation += 1
        self._in_flight = None
        self._route = None
        self._current_step_index = None
        self._distance_to_next_m = None
        self._last_spoken_instruction = ""
        self.route_service.reset_throttle()
        bearing = 0.0
        if self._location is not None:
            bearing = initial_bearing_deg(self._location.latitude, self._location.longitude,
                                          destination.lat, destination.lon)
        self._set_state(replace(
            self._state,
            is_navigating=True,
            destination=destination,
            destination_name=name,
            route_summary=None,
            bearing_deg=bearing,
        ))
        if self.tracker is not None:
            self.tracker.set_navigating(True, destination)
        self._recompute_timer.start()
        self.route_changed.emit(None)
        self.log_navigation_event("Navigation started", destination=destination.as_tuple(),
                                  name=name)
        self.announcer.announce(f"Starting navigation to {name}")
        self.request_route()

    def stop_navigation(self):
        """Return to Idle, dropping destination, route summary and bearing."""
        was_navigating = self._state.is_navigating
        self._recompute_timer.stop()
        # In-flight fetches still complete but their results are ignored.
        self._generation += 1
        self._in_flight = None
        self._route = None
        self._current_step_index = None
        self._distance_to_next_m = None
        self._last_spoken_instruction = ""
        self._set_state(self._state.idle())
        if self.tracker is not None:
            self.tracker.set_navigating(False)
        self.route_changed.emit(None)
        self.instruction_changed.emit("")
        if was_navigating:
            self.log_navigation_event("Navigation ended")
            self.announcer.announce("Navigation ended")

    def update_state(self, **changes):
        """Merge partial updates without touching the Navigating/Idle flag."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            known = {f.name for f in fields(NavigationState)}
            if unknown & known:
                raise ValueError(f"update_state cannot change {sorted(unknown & known)}")
            raise ValueError(f"Unknown navigation fields: {sorted(unknown)}")
        if "voice_enabled" in changes:
            self.announcer.enabled = bool(changes["voice_enabled"])
        self._set_state(replace(self._state, **changes))

    def toggle_voice(self) -> bool:
        enabled = not self._state.voice_enabled
        self.update_state(voice_enabled=enabled)
        if not enabled:
            self.announcer.cancel()
        self.log_user_action("toggle_voice", {"enabled": enabled})
        return enabled

    # ------------------------------------------------------------------
    # Location and routing
    # ------------------------------------------------------------------
    def on_location_changed(self, fix: LocationFix):
        self._location = fix
        if not self._state.is_navigating or self._state.destination is None:
            return
        destination = self._state.destination
        bearing = fix.bearing_to_destination_deg
        if bearing is None:
            bearing = initial_bearing_deg(fix.latitude, fix.longitude, destination.lat, destination.lon)
        self.update_state(bearing_deg=bearing)
        self._advance_turn(fix)
        self.request_route()

    def _on_recompute_timer(self):
        if self._state.is_navigating:
            self.log_debug("Periodic route recomputation")
            self.request_route(force=True)

    def request_route(self, force: bool = False) -> bool:
        """Ask the route service for a route from the last fix; returns whether issued."""
        if not self._state.is_navigating or self._state.destination is None or self._location is None:
            return False
        if self._in_flight is not None and not force:
            # A fetch is already running; it will bring fresher data than a throttled answer.
            return False
        self._generation += 1
        generation = self._generation
        self._in_flight = generation
        origin = self._location.position
        destination = self._state.destination

        def deliver(route: CachedRoute):
            if self._in_flight == generation:
                self._in_flight = None
            self._apply_route(generation, route)

        try:
            self.route_service.request_route(origin, destination, force, self.dispatcher, deliver)
        except Exception as exc:
            self._in_flight = None
            self.log_error("Route request failed", exception=exc)
            return False
        return True

    def _apply_route(self, generation: int, route: CachedRoute):
        if generation != self._generation or not self._state.is_navigating:
            self.log_debug("Discarding stale route", generation=generation,
                           current=self._generation, key=route.key)
            return
        if route.destination != self._state.destination:
            return
        if self._route is None or route.steps != self._route.steps:
            self._current_step_index = None
            self._distance_to_next_m = None
        self._route = route
        self.route_changed.emit(route)
        if route.is_fallback:
            # A straight line has no distance/duration worth announcing.
            return
        summary = RouteSummary.from_route(route)
        if self.current_step is not None:
            summary = replace(summary, next_instruction=self.current_step.instruction)
        self.update_state(route_summary=summary)
        if self._location is not None:
            self._advance_turn(self._location)

    def _advance_turn(self, fix: LocationFix):
        route = self._route
        if route is None or not route.steps:
            return
        index = select_current_step(route.steps, fix.position, self.config.turn_advance_radius_m)
        if index is None:
            return
        step = route.steps[index]
        if index + 1 < len(route.steps):
            target = route.steps[index + 1].maneuver_location
        else:
            target = step.maneuver_location
        self._distance_to_next_m = distance_between(fix.position, target)
        instruction = step.instruction
        if index != self._current_step_index:
            self._current_step_index = index
            summary = self._state.route_summary or RouteSummary()
            self.update_state(route_summary=replace(summary, next_instruction=instruction))
            self.instruction_changed.emit(instruction)
        if instruction != self._last_spoken_instruction and self._distance_to_next_m < self.config.announce_radius_m:
            self._last_spoken_instruction = instruction
            self.announcer.announce(instruction)


__all__ = [
    "NavigationController",
    "NavigationState",
    "RouteSummary",
    "select_current_step",
]
