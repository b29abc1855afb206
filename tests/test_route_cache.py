"""Tests for route resolution, caching, throttling and fallbacks."""
from __future__ import annotations

import pytest

from geo import LatLng, distance_between
from network import NetworkError
from route_cache import (
    RouteCache, RouteFetchError, RouteService, RouteSource, describe_maneuver,
    direct_route, parse_osrm_response, route_key,
)
from workers import DeferredDispatcher, ImmediateDispatcher

ORIGIN = LatLng(40.7128, -74.0060)
DEST = LatLng(40.7484, -73.9857)
OTHER_DEST = LatLng(40.7306, -73.9352)


class RecordingFetcher:
    """Answers every URL with the same payload and remembers the calls."""

    def __init__(self, payload):
        self.payload = payload
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture()
def payload(route_payload):
    return route_payload(
        [(40.7128, -74.0060), (40.7300, -74.0000), (40.7484, -73.9857)],
        steps=[
            {"location": (40.7128, -74.0060), "type": "depart", "name": "Broadway",
             "instruction": "Head north on Broadway"},
            {"location": (40.7300, -74.0000), "type": "turn", "modifier": "right",
             "name": "5th Avenue"},
            {"location": (40.7484, -73.9857), "type": "arrive", "name": ""},
        ],
    )


def make_service(fetcher, clock, online=True, capacity=100):
    state = {"online": online}
    service = RouteService(cache=RouteCache(capacity), fetcher=fetcher,
                           is_online=lambda: state["online"], clock=clock)
    return service, state


def test_route_key_is_ordered():
    assert route_key(ORIGIN, DEST) == "40.7128,-74.006-40.7484,-73.9857"
    assert route_key(ORIGIN, DEST) != route_key(DEST, ORIGIN)


def test_parse_osrm_response_extracts_geometry_and_steps(payload):
    route = parse_osrm_response(payload, ORIGIN, DEST)
    assert route.coordinates[0] == LatLng(40.7128, -74.0060)
    assert route.coordinates[-1] == LatLng(40.7484, -73.9857)
    assert route.distance_m == 5230.0
    assert route.duration_s == 610.0
    assert [step.instruction for step in route.steps] == [
        "Head north on Broadway",
        "Turn right onto 5th Avenue",
        "Arrive at your destination",
    ]
    assert route.steps[1].maneuver_location == LatLng(40.7300, -74.0000)
    assert route.source is RouteSource.NETWORK


def test_parse_osrm_response_rejects_empty_routes():
    with pytest.raises(RouteFetchError):
        parse_osrm_response({"code": "NoRoute", "routes": []}, ORIGIN, DEST)
    with pytest.raises(RouteFetchError):
        parse_osrm_response({"routes": [{"geometry": {}}]}, ORIGIN, DEST)


@pytest.mark.parametrize(
    "maneuver, name, expected",
    [
        ({"type": "depart"}, "Main Street", "Head out on Main Street"),
        ({"type": "turn", "modifier": "left"}, "Elm Street", "Turn left onto Elm Street"),
        ({"type": "turn", "modifier": "uturn"}, "", "Make a U-turn"),
        ({"type": "roundabout", "exit": 2}, "", "Enter the roundabout and take exit 2"),
        ({"type": "arrive", "modifier": "right"}, "", "Arrive at your destination on the right"),
        ({"type": "continue", "modifier": "straight"}, "Route 9", "Continue straight onto Route 9"),
    ],
)
def test_describe_maneuver(maneuver, name, expected):
    assert describe_maneuver(maneuver, name) == expected


def test_cache_evicts_oldest_inserted_entry():
    cache = RouteCache(capacity=2)
    first = direct_route(LatLng(1, 1), LatLng(2, 2))
    second = direct_route(LatLng(3, 3), LatLng(4, 4))
    third = direct_route(LatLng(5, 5), LatLng(6, 6))
    assert cache.put(first) is None
    assert cache.put(second) is None
    # Reading does not refresh recency.
    assert cache.get(LatLng(1, 1), LatLng(2, 2)) == first
    assert cache.put(third) == first.key
    assert cache.keys() == [second.key, third.key]
    assert len(cache) == 2


def test_cache_rejects_zero_capacity():
    with pytest.raises(ValueError):
        RouteCache(capacity=0)


def test_network_route_is_cached(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock)

    first = service.get_route(ORIGIN, DEST)
    assert first.source is RouteSource.NETWORK
    assert fetcher.urls == [
        "https://router.project-osrm.org/route/v1/driving/-74.006,40.7128;-73.9857,40.7484"
        "?overview=full&geometries=geojson"
    ]

    clock.advance(120)
    second = service.get_route(ORIGIN, DEST)
    assert second.source is RouteSource.CACHE
    assert second.coordinates == first.coordinates
    assert len(fetcher.urls) == 1


def test_reverse_direction_is_a_separate_entry(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock)

    service.get_route(ORIGIN, DEST)
    clock.advance(60)
    reverse = service.get_route(DEST, ORIGIN)
    assert reverse.source is RouteSource.NETWORK
    assert len(fetcher.urls) == 2
    assert route_key(DEST, ORIGIN) in service.cache


def test_recompute_within_window_returns_last_route(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock)

    first = service.get_route(ORIGIN, DEST)
    clock.advance(10)
    moved = LatLng(40.7200, -74.0030)
    throttled = service.get_route(moved, DEST)
    assert throttled.source is RouteSource.THROTTLED
    assert throttled.coordinates == first.coordinates
    assert len(fetcher.urls) == 1

    forced = service.get_route(moved, DEST, force_recompute=True)
    assert forced.source is RouteSource.NETWORK
    assert len(fetcher.urls) == 2

    clock.advance(31)
    later = service.get_route(LatLng(40.7250, -74.0010), DEST)
    assert later.source is RouteSource.NETWORK
    assert len(fetcher.urls) == 3


def test_throttle_does_not_apply_to_a_new_destination(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock)

    service.get_route(ORIGIN, DEST)
    clock.advance(5)
    other = service.get_route(ORIGIN, OTHER_DEST)
    assert other.source is RouteSource.NETWORK
    assert len(fetcher.urls) == 2


def test_offline_returns_uncached_direct_route(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock, online=False)

    route = service.get_route(ORIGIN, DEST)
    assert route.source is RouteSource.OFFLINE
    assert route.coordinates == (ORIGIN, DEST)
    assert route.distance_m == pytest.approx(distance_between(ORIGIN, DEST))
    assert route.is_fallback
    assert fetcher.urls == []
    assert len(service.cache) == 0


def test_offline_still_serves_cached_routes(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, state = make_service(fetcher, clock)

    service.get_route(ORIGIN, DEST)
    state["online"] = False
    assert service.get_route(ORIGIN, DEST).source is RouteSource.CACHE


def test_fetch_failure_falls_back_without_caching(clock):
    fetcher = RecordingFetcher(NetworkError("HTTP 503", status=503))
    service, _ = make_service(fetcher, clock)

    route = service.get_route(ORIGIN, DEST)
    assert route.source is RouteSource.FALLBACK
    assert route.coordinates == (ORIGIN, DEST)
    assert len(service.cache) == 0
    assert service.last_route is None

    # No throttle is armed by a failure, so the next call retries.
    service.get_route(ORIGIN, DEST)
    assert len(fetcher.urls) == 2


def test_malformed_payload_falls_back(clock):
    service, _ = make_service(RecordingFetcher({"routes": "nope"}), clock)
    assert service.get_route(ORIGIN, DEST).source is RouteSource.FALLBACK


def test_request_route_runs_fetch_through_dispatcher(payload, clock):
    fetcher = RecordingFetcher(payload)
    service, _ = make_service(fetcher, clock)
    dispatcher = DeferredDispatcher()
    received = []

    service.request_route(ORIGIN, DEST, False, dispatcher, received.append)
    assert received == []
    assert len(dispatcher.pending) == 1

    dispatcher.run_pending()
    assert [route.source for route in received] == [RouteSource.NETWORK]
    assert route_key(ORIGIN, DEST) in service.cache


def test_late_response_is_cached_but_not_throttled(payload, route_payload, clock):
    moved = LatLng(40.7200, -74.0030)
    newer = route_payload([moved.as_tuple(), DEST.as_tuple()], distance=1234.0)
    service, _ = make_service(lambda url: newer if "/-74.003,40.72;" in url else payload, clock)
    dispatcher = DeferredDispatcher()
    received = []

    service.request_route(ORIGIN, DEST, False, dispatcher, received.append)
    service.request_route(moved, DEST, True, dispatcher, received.append)
    dispatcher.run_pending(reverse=True)
    assert [route.distance_m for route in received] == [1234.0, payload["routes"][0]["distance"]]
    assert service.last_route.distance_m == 1234.0
    assert route_key(ORIGIN, DEST) in service.cache

    clock.advance(5)
    throttled = service.get_route(LatLng(40.7250, -74.0010), DEST)
    assert throttled.source is RouteSource.THROTTLED
    assert throttled.distance_m == 1234.0


def test_request_route_answers_cache_hits_inline(payload, clock):
    service, _ = make_service(RecordingFetcher(payload), clock)
    service.get_route(ORIGIN, DEST)
    dispatcher = DeferredDispatcher()
    received = []

    service.request_route(ORIGIN, DEST, False, dispatcher, received.append)
    assert dispatcher.pending == []
    assert received[0].source is RouteSource.CACHE


def test_request_route_error_delivers_fallback(clock):
    service, _ = make_service(RecordingFetcher(NetworkError("down")), clock)
    received = []
    service.request_route(ORIGIN, DEST, True, ImmediateDispatcher(), received.append)
    assert received[0].source is RouteSource.FALLBACK
