"""Error taxonomy for the tile proxy.

Only RoutingError and OriginFetchError are ever turned into HTTP responses
(404 and 500). CacheError stays inside the cache boundary: a failed lookup
degrades to a miss and a failed save is logged and dropped.
"""


class TileProxyError(Exception):
    """Base class for all tile proxy errors."""


class RoutingError(TileProxyError):
    """The request path does not match the tile path grammar."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Path does not address a tile: {path!r}")
        self.path = path


class OriginFetchError(TileProxyError):
    """The upstream tile server could not produce a tile body."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed downloading {url}: {reason}")
        self.url = url
        self.reason = reason


class CacheError(TileProxyError):
    """A cache backend failed to load or persist a tile."""


class ConfigurationError(TileProxyError):
    """Settings do not describe a usable cache backend."""
