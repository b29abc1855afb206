"""Tests for the in-memory tile cache and preloading."""
from __future__ import annotations

import pytest

from geo import LatLng, coordinate_to_tile
from network import NetworkError
from tile_cache import (
    PLACEHOLDER_TILE_BYTES, CachedTile, TileCache, TileFetchError, tile_url, tile_urls,
)
from workers import DeferredDispatcher, ImmediateDispatcher

TEMPLATE = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"


def test_tile_url_picks_subdomain_from_coordinates():
    assert tile_url(TEMPLATE, "abc", 16, 5, 7) == "https://a.tile.openstreetmap.org/16/5/7.png"
    assert tile_url(TEMPLATE, "abc", 16, 5, 8) == "https://b.tile.openstreetmap.org/16/5/8.png"
    assert tile_url(TEMPLATE, "abc", 16, 5, 9) == "https://c.tile.openstreetmap.org/16/5/9.png"
    assert tile_url(TEMPLATE, "abc", 3, -2, 0) == "https://c.tile.openstreetmap.org/3/-2/0.png"


def test_tile_urls_cover_neighbouring_zoom_levels():
    urls = tile_urls(LatLng(0.0, 0.0), 2, 1, TEMPLATE, "abc")
    assert len(urls) == 27
    zooms = {url.split("/")[3] for url in urls}
    assert zooms == {"1", "2", "3"}
    cx, cy = coordinate_to_tile(0.0, 0.0, 2)
    assert tile_url(TEMPLATE, "abc", 2, cx, cy) in urls


def test_tile_urls_clamp_zoom_range():
    urls = tile_urls(LatLng(0.0, 0.0), 18, 0, TEMPLATE, "abc")
    assert {url.split("/")[3] for url in urls} == {"17", "18"}
    urls = tile_urls(LatLng(0.0, 0.0), 0, 0, TEMPLATE, "abc")
    assert {url.split("/")[3] for url in urls} == {"0", "1"}


def test_eviction_keeps_capacity_and_drops_first_inserted():
    cache = TileCache()
    evicted = []
    for index in range(1001):
        evicted.append(cache.store_tile(f"https://tiles.example/{index}.png", b"png"))
    assert len(cache) == 1000
    assert evicted[-1] == "https://tiles.example/0.png"
    assert "https://tiles.example/0.png" not in cache
    assert cache.urls()[0] == "https://tiles.example/1.png"
    assert all(value is None for value in evicted[:1000])


def test_reads_do_not_refresh_insertion_order():
    cache = TileCache(capacity=2)
    cache.store_tile("one", b"1")
    cache.store_tile("two", b"2")
    assert cache.get_tile("one") == CachedTile("one", b"1")
    assert cache.store_tile("three", b"3") == "one"


def test_restoring_existing_url_does_not_evict():
    cache = TileCache(capacity=2)
    cache.store_tile("one", b"1")
    cache.store_tile("two", b"2")
    assert cache.store_tile("two", b"22") is None
    assert cache.tile_or_placeholder("two") == b"22"
    assert len(cache) == 2


def test_placeholder_for_missing_tiles():
    cache = TileCache()
    assert cache.tile_or_placeholder("https://tiles.example/missing.png") == PLACEHOLDER_TILE_BYTES
    assert PLACEHOLDER_TILE_BYTES.startswith(b"\x89PNG")
    assert CachedTile("x", b"abc").data_url == "data:image/png;base64,YWJj"


def test_preload_fetches_and_stores_window():
    fetched = []

    def fetcher(url):
        fetched.append(url)
        return b"tile"

    cache = TileCache(fetcher=fetcher, dispatcher=ImmediateDispatcher())
    stored = []
    cache.tile_stored.connect(lambda url: stored.append(url))

    requested = cache.preload_tiles(LatLng(0.0, 0.0), 2, radius=1)
    assert requested == 27
    assert len(cache) == 27
    assert stored == fetched

    # A second preload of the same window only finds cached tiles.
    assert cache.preload_tiles(LatLng(0.0, 0.0), 2, radius=1) == 0
    assert len(fetched) == 27


def test_preload_failures_are_skipped():
    def fetcher(url):
        if url.endswith("/2/2/2.png"):
            raise NetworkError("HTTP 404", status=404)
        return b"tile"

    cache = TileCache(fetcher=fetcher, dispatcher=ImmediateDispatcher())
    cache.preload_tiles(LatLng(0.0, 0.0), 2, radius=1)
    assert len(cache) == 26
    assert cache.tile_or_placeholder(cache.url_for(2, 2, 2)) == PLACEHOLDER_TILE_BYTES


def test_empty_payload_is_not_cached():
    cache = TileCache(fetcher=lambda url: b"", dispatcher=ImmediateDispatcher())
    url = cache.url_for(16, 1, 1)
    assert cache.request_tile(url) is True
    assert url not in cache
    with pytest.raises(TileFetchError):
        cache._fetch_tile(url)
    # Nothing stays in flight after a failure, so the tile can be retried.
    assert cache.request_tile(url) is True


def test_in_flight_tiles_are_not_requested_twice():
    dispatcher = DeferredDispatcher()
    cache = TileCache(fetcher=lambda url: b"tile", dispatcher=dispatcher)
    url = cache.url_for(16, 19298, 24633)

    assert cache.request_tile(url) is True
    assert cache.request_tile(url) is False
    assert dispatcher.run_pending() == 1
    assert url in cache
    assert cache.request_tile(url) is False


def test_request_without_dispatcher_is_a_no_op():
    cache = TileCache(fetcher=lambda url: b"tile")
    assert cache.request_tile("https://tiles.example/1.png") is False
    assert len(cache) == 0


def test_invalid_capacity():
    with pytest.raises(ValueError):
        TileCache(capacity=0)
