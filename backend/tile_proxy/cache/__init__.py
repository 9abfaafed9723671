"""Tile cache contract and backends.

This package holds the cache contract every backend satisfies, the shared
data models, and the local-disk, object-storage and in-memory backends.
The dispatcher depends only on TileCacheProtocol; the concrete backend is
chosen once at start-up by provider.get_tile_cache.

Example:
    >>> from tile_proxy.cache import provider
    >>> cache = provider.get_tile_cache(settings)
"""
