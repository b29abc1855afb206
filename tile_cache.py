"""In-memory map tile cache with best-effort preloading."""

from __future__ import annotations

import base64
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set

from PySide6.QtCore import QObject, Signal

from config import NavigationConfig
from geo import LatLng, MAX_TILE_ZOOM, coordinate_to_tile
from logger import LoggableMixin, LogCategory
from network import NetworkError, fetch_bytes

TileFetcher = Callable[[str], bytes]


class TileFetchError(NetworkError):
    """Raised when a tile download yields no usable image data."""

# A tiny 1x1 PNG that the map upscales when no real tile data exists.
PLACEHOLDER_TILE_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


@dataclass(frozen=True)
class CachedTile:
    url: str
    data: bytes

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.data).decode("ascii")


def tile_url(template: str, subdomains: Iterable[str], zoom: int, x: int, y: int) -> str:
    """Format a tile URL, picking the subdomain from the tile coordinates."""
    choices = tuple(subdomains) or ("",)
    subdomain = choices[abs(x + y) % len(choices)]
    return template.format(s=subdomain, z=zoom, x=x, y=y)


def tile_urls(center: LatLng, zoom: int, radius: int,
              template: str = NavigationConfig.tile_url_template,
              subdomains: Iterable[str] = NavigationConfig.tile_subdomains) -> List[str]:
    """URLs in a ``(2r+1)^2`` window around ``center`` for zoom-1..zoom+1."""
    urls: List[str] = []
    subdomains = tuple(subdomains)
    for z in range(max(0, zoom - 1), min(MAX_TILE_ZOOM, zoom + 1) + 1):
        cx, cy = coordinate_to_tile(center.lat, center.lon, z)
        for dx in range(-radius, radius + 1):
            for dy in range(-radius, radius + 1):
                urls.append(tile_url(template, subdomains, z, cx + dx, cy + dy))
    return urls


class TileCache(QObject, LoggableMixin):
    """Bounded tile store evicting the first-inserted URL (not least recently used)."""

    tile_stored = Signal(str)
    log_category = LogCategory.TILES

    def __init__(self, config: Optional[NavigationConfig] = None,
                 capacity: Optional[int] = None,
                 fetcher: Optional[TileFetcher] = None,
                 dispatcher=None,
                 placeholder: bytes = PLACEHOLDER_TILE_BYTES,
                 parent: Optional[QObject] = None):
        QObject.__init__(self, parent)
        LoggableMixin.__init__(self)
        self.config = config or NavigationConfig()
        self.capacity = capacity if capacity is not None else self.config.tile_cache_capacity
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.fetcher: TileFetcher = fetcher or self._default_fetcher
        self.dispatcher = dispatcher
        self.placeholder = placeholder
        self._tiles: "OrderedDict[str, CachedTile]" = OrderedDict()
        self._in_flight: Set[str] = set()

    def _default_fetcher(self, url: str) -> bytes:
        return fetch_bytes(url, timeout=self.config.request_timeout_s)

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, url: str) -> bool:
        return url in self._tiles

    def urls(self) -> List[str]:
        return list(self._tiles)

    def store_tile(self, url: str, data: bytes) -> Optional[str]:
        """Insert a tile; returns the evicted URL, if any."""
        evicted = None
        if url not in self._tiles and len(self._tiles) >= self.capacity:
            evicted, _ = self._tiles.popitem(last=False)
        self._tiles[url] = CachedTile(url, data)
        self.tile_stored.emit(url)
        return evicted

    def get_tile(self, url: str) -> Optional[CachedTile]:
        return self._tiles.get(url)

    def tile_or_placeholder(self, url: str) -> bytes:
        tile = self._tiles.get(url)
        return tile.data if tile is not None else self.placeholder

    def url_for(self, zoom: int, x: int, y: int) -> str:
        return tile_url(self.config.tile_url_template, self.config.tile_subdomains, zoom, x, y)

    def preload_tiles(self, center: LatLng, zoom: int, radius: int = 2) -> int:
        """Fetch uncached tiles around ``center``; returns how many were requested."""
        urls = tile_urls(center, zoom, radius, self.config.tile_url_template,
                         self.config.tile_subdomains)
        requested = 0
        for url in urls:
            if self.request_tile(url):
                requested += 1
        self.log_debug("Tile preload dispatched", zoom=zoom, radius=radius,
                       requested=requested, window=len(urls))
        return requested

    def request_tile(self, url: str) -> bool:
        """Fetch one tile in the background unless cached or already in flight."""
        if url in self._tiles or url in self._in_flight:
            return False
        if self.dispatcher is None:
            return False
        self._in_flight.add(url)

        def on_result(data: bytes):
            self._in_flight.discard(url)
            self.store_tile(url, data)

        def on_error(exc: BaseException):
            self._in_flight.discard(url)
            self.log_warning("Tile preload failed", exception=exc, url=url)

        self.dispatcher.dispatch(lambda: self._fetch_tile(url), on_result, on_error)
        return True

    def _fetch_tile(self, url: str) -> bytes:
        data = self.fetcher(url)
        if not data:
            raise TileFetchError(f"empty tile payload for {url}")
        return data

    def clear(self) -> None:
        self._tiles.clear()


__all__ = [
    "CachedTile",
    "TileFetchError",
    "PLACEHOLDER_TILE_BYTES",
    "TileCache",
    "tile_url",
    "tile_urls",
]
