"""Read-through caching reverse proxy for slippy-map tiles.

Clients request ``/{shard}/{zoom}/{column}/{row}.png``. The proxy answers
from its cache when it can; otherwise it fetches the tile from the upstream
tile server and streams it to the client and into the cache at the same
time. Cache failures never break a client response.

- cache: the cache contract plus filesystem, S3 and in-memory backends
- services: upstream fetcher, stream tee and the tile dispatcher
- api: the HTTP tile route
- core: settings, logging and the error taxonomy
"""

__version__ = "0.1.0"
