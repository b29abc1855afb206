"""Driving routes from an OSRM-compatible service with an in-memory cache.

The map must never go blank, so every failure path degrades to a straight
two-point route between origin and destination instead of raising.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import NavigationConfig
from geo import LatLng, distance_between
from logger import LoggableMixin, LogCategory
from network import JsonFetcher, NetworkError, fetch_json


class RouteSource(Enum):
    """Where a returned route came from."""

    NETWORK = "network"
    CACHE = "cache"
    THROTTLED = "throttled"
    OFFLINE = "offline"
    FALLBACK = "fallback"


class RouteFetchError(NetworkError):
    """Raised when the routing service answer cannot be used."""


@dataclass(frozen=True)
class RouteStep:
    """One turn-by-turn maneuver."""

    instruction: str
    maneuver_location: LatLng
    distance_m: float = 0.0
    duration_s: float = 0.0
    name: str = ""


@dataclass(frozen=True)
class CachedRoute:
    key: str
    origin: LatLng
    destination: LatLng
    coordinates: Tuple[LatLng, ...]
    distance_m: float
    duration_s: float
    steps: Tuple[RouteStep, ...] = ()
    source: RouteSource = RouteSource.NETWORK

    @property
    def is_fallback(self) -> bool:
        return self.source in (RouteSource.OFFLINE, RouteSource.FALLBACK)


def route_key(origin: LatLng, destination: LatLng) -> str:
    """Cache key for an ordered origin/destination pair; never symmetric."""
    return f"{origin.lat},{origin.lon}-{destination.lat},{destination.lon}"


def direct_route(origin: LatLng, destination: LatLng,
                 source: RouteSource = RouteSource.FALLBACK) -> CachedRoute:
    """The straight two-point path used when no real route is available."""
    return CachedRoute(
        key=route_key(origin, destination),
        origin=origin,
        destination=destination,
        coordinates=(origin, destination),
        distance_m=distance_between(origin, destination),
        duration_s=0.0,
        steps=(),
        source=source,
    )


_MODIFIER_WORDS = {
    "uturn": "make a U-turn",
    "sharp right": "sharp right",
    "sharp left": "sharp left",
    "slight right": "slight right",
    "slight left": "slight left",
    "straight": "straight",
    "right": "right",
    "left": "left",
}


def describe_maneuver(maneuver: Dict[str, Any], road_name: str = "") -> str:
    """Build an instruction sentence when the service does not supply one."""
    kind = str(maneuver.get("type", "")).lower()
    modifier = str(maneuver.get("modifier", "")).lower()
    onto = f" onto {road_name}" if road_name else ""
    direction = _MODIFIER_WORDS.get(modifier, modifier)
    if kind == "depart":
        return f"Head out on {road_name}" if road_name else "Depart"
    if kind == "arrive":
        side = f" on the {modifier}" if modifier in ("left", "right") else ""
        return f"Arrive at your destination{side}"
    if kind in ("roundabout", "rotary"):
        exit_number = maneuver.get("exit")
        exit_text = f" and take exit {exit_number}" if exit_number else ""
        return f"Enter the roundabout{exit_text}{onto}"
    if modifier == "uturn":
        return f"Make a U-turn{onto}"
    if kind in ("continue", "new name"):
        if direction and direction != "straight":
            return f"Continue {direction}{onto}"
        return f"Continue straight{onto}"
    if kind == "merge":
        return f"Merge {direction}{onto}".replace("  ", " ")
    if kind in ("on ramp", "off ramp"):
        ramp = "Take the ramp" if kind == "on ramp" else "Take the exit"
        return f"{ramp} on the {direction}{onto}" if direction else f"{ramp}{onto}"
    if kind == "fork":
        return f"Keep {direction} at the fork{onto}"
    if kind == "end of road":
        return f"Turn {direction} at the end of the road{onto}"
    if direction:
        return f"Turn {direction}{onto}"
    return f"Continue{onto}"


def parse_osrm_response(payload: Dict[str, Any], origin: LatLng, destination: LatLng) -> CachedRoute:
    """Extract geometry, totals and steps from ``routes[0]``."""
    try:
        routes = payload.get("routes") or []
        if not routes:
            raise RouteFetchError(f"routing service returned no routes (code={payload.get('code')})")
        first = routes[0]
        coordinates = tuple(LatLng(float(lat), float(lon))
                            for lon, lat in first["geometry"]["coordinates"])
        legs = first.get("legs") or [{}]
        steps: List[RouteStep] = []
        for raw in legs[0].get("steps", []):
            maneuver = raw.get("maneuver", {})
            lon, lat = maneuver["location"][:2]
            name = raw.get("name", "") or ""
            instruction = maneuver.get("instruction") or describe_maneuver(maneuver, name)
            steps.append(RouteStep(
                instruction=instruction,
                maneuver_location=LatLng(float(lat), float(lon)),
                distance_m=float(raw.get("distance", 0.0)),
                duration_s=float(raw.get("duration", 0.0)),
                name=name,
            ))
        return CachedRoute(
            key=route_key(origin, destination),
            origin=origin,
            destination=destination,
            coordinates=coordinates,
            distance_m=float(first["distance"]),
            duration_s=float(first["duration"]),
            steps=tuple(steps),
            source=RouteSource.NETWORK,
        )
    except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
        raise RouteFetchError(f"malformed routing response: {exc}") from exc


class RouteCache:
    """Bounded route store evicting the oldest inserted entry."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, CachedRoute]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, origin: LatLng, destination: LatLng) -> Optional[CachedRoute]:
        return self._entries.get(route_key(origin, destination))

    def put(self, route: CachedRoute) -> Optional[str]:
        """Store ``route``; returns the evicted key, if any."""
        if route.key in self._entries:
            # Replacing keeps the original insertion position.
            self._entries[route.key] = route
            return None
        evicted = None
        if len(self._entries) >= self.capacity:
            evicted, _ = self._entries.popitem(last=False)
        self._entries[route.key] = route
        return evicted

    def keys(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


RouteCallback = Callable[[CachedRoute], None]


class RouteService(LoggableMixin):
    """Resolves routes through cache, throttle, offline fallback and network."""

    log_category = LogCategory.ROUTING

    def __init__(self, config: Optional[NavigationConfig] = None,
                 cache: Optional[RouteCache] = None,
                 fetcher: Optional[JsonFetcher] = None,
                 is_online: Callable[[], bool] = lambda: True,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__()
        self.config = config or NavigationConfig()
        self.cache = cache or RouteCache(self.config.route_cache_capacity)
        self.fetcher: JsonFetcher = fetcher or self._default_fetcher
        self.is_online = is_online
        self.clock = clock
        self._last_recompute: Optional[float] = None
        self._last_route: Optional[CachedRoute] = None
        # Issued and newest-stored fetch numbers; fetches may finish out of order.
        self._request_sequence = 0
        self._stored_sequence = 0
        self.network_calls = 0

    def _default_fetcher(self, url: str) -> Dict[str, Any]:
        return fetch_json(url, timeout=self.config.request_timeout_s)

    def route_url(self, origin: LatLng, destination: LatLng) -> str:
        base = self.config.routing_base_url.rstrip("/")
        return (f"{base}/route/v1/driving/{origin.lon},{origin.lat};"
                f"{destination.lon},{destination.lat}?overview=full&geometries=geojson")

    @property
    def last_route(self) -> Optional[CachedRoute]:
        return self._last_route

    def reset_throttle(self) -> None:
        """Forget the last recomputation so the next request may hit the network."""
        self._last_recompute = None

    def _throttled(self, destination: LatLng) -> bool:
        if self._last_recompute is None or self._last_route is None:
            return False
        if self._last_route.destination != destination:
            return False
        return self.clock() - self._last_recompute < self.config.route_throttle_s

    def lookup(self, origin: LatLng, destination: LatLng,
               force_recompute: bool = False) -> Optional[CachedRoute]:
        """Answer without the network when possible; ``None`` means fetch."""
        if not force_recompute:
            cached = self.cache.get(origin, destination)
            if cached is not None:
                self.log_debug("Route cache hit", key=cached.key)
                return replace(cached, source=RouteSource.CACHE)
            if self._throttled(destination):
                self.log_debug("Route recomputation throttled", key=route_key(origin, destination))
                return replace(self._last_route, source=RouteSource.THROTTLED)
        if not self.is_online():
            self.log_info("Offline; using direct path", key=route_key(origin, destination))
            return direct_route(origin, destination, RouteSource.OFFLINE)
        return None

    def fetch_route(self, origin: LatLng, destination: LatLng) -> CachedRoute:
        """Query the routing service. Touches no shared state."""
        url = self.route_url(origin, destination)
        payload = self.fetcher(url)
        if not isinstance(payload, dict):
            raise RouteFetchError("routing service returned a non-object payload")
        return parse_osrm_response(payload, origin, destination)

    def _next_sequence(self) -> int:
        self.network_calls += 1
        self._request_sequence += 1
        return self._request_sequence

    def store(self, route: CachedRoute, sequence: Optional[int] = None) -> bool:
        """Cache a fetched route; returns whether it became the last route.

        A response older than the newest stored one is cached by key but
        never replaces the route the throttle hands out.
        """
        evicted = self.cache.put(route)
        if sequence is not None and sequence < self._stored_sequence:
            self.log_debug("Late route response cached only", key=route.key,
                           sequence=sequence, newest=self._stored_sequence)
            return False
        if sequence is not None:
            self._stored_sequence = sequence
        self._last_route = route
        self._last_recompute = self.clock()
        self.log_info("Route fetched", key=route.key, distance_m=round(route.distance_m, 1),
                      duration_s=round(route.duration_s, 1), steps=len(route.steps),
                      evicted=evicted)
        return True

    def fallback(self, origin: LatLng, destination: LatLng, exc: BaseException) -> CachedRoute:
        self.log_warning("Route fetch failed; using direct path", exception=exc,
                         key=route_key(origin, destination))
        return direct_route(origin, destination, RouteSource.FALLBACK)

    def get_route(self, origin: LatLng, destination: LatLng,
                  force_recompute: bool = False) -> CachedRoute:
        """Resolve a route synchronously."""
        found = self.lookup(origin, destination, force_recompute)
        if found is not None:
            return found
        sequence = self._next_sequence()
        try:
            route = self.fetch_route(origin, destination)
        except Exception as exc:
            return self.fallback(origin, destination, exc)
        self.store(route, sequence)
        return route

    def request_route(self, origin: LatLng, destination: LatLng, force_recompute: bool,
                      dispatcher, callback: RouteCallback) -> None:
        """Resolve a route, running any network call through ``dispatcher``.

        ``callback`` runs on the dispatcher's delivery thread with the route,
        a cached one, or the direct fallback.
        """
        found = self.lookup(origin, destination, force_recompute)
        if found is not None:
            callback(found)
            return
        sequence = self._next_sequence()

        def on_result(route: CachedRoute):
            self.store(route, sequence)
            callback(route)

        def on_error(exc: BaseException):
            callback(self.fallback(origin, destination, exc))

        dispatcher.dispatch(lambda: self.fetch_route(origin, destination), on_result, on_error)


__all__ = [
    "CachedRoute",
    "RouteCache",
    "RouteFetchError",
    "RouteService",
    "RouteSource",
    "RouteStep",
    "describe_maneuver",
    "direct_route",
    "parse_osrm_response",
    "route_key",
]
