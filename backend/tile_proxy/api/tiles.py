"""XYZ tile endpoint of the caching proxy.

Every GET that is not otherwise routed lands here. The path is parsed with
the fixed tile grammar ``/{shard}/{zoom}/{column}/{row}.png``; anything else
is answered with a plain-text 404 (see the exception handlers installed by
tile_proxy.main.create_app). Matching requests are served from the cache or
fetched upstream and streamed back.

Example:
    Request a tile:
        >>> response = client.get("/a/3/2/1.png")
        >>> # First request: fetched from https://a.tile.openstreetmap.org/3/2/1.png
        >>> # Later requests: served from the cache

    Use in Leaflet:
        >>> L.tileLayer('http://localhost:3030/{s}/{z}/{x}/{y}.png')
"""

import fastapi
from fastapi import responses

from tile_proxy.core import config
from tile_proxy.services import proxy

router = fastapi.APIRouter(tags=["tiles"])


def _get_settings(request: fastapi.Request) -> config.Settings:
    """Resolve the settings the application was created with."""
    return request.app.state.settings  # type: ignore[no-any-return]


def _get_proxy(request: fastapi.Request) -> proxy.TileProxy:
    """Resolve the tile dispatcher built by the application lifespan.

    Args:
        request: Incoming request (injected by FastAPI).

    Returns:
        TileProxy shared by all requests of the application.
    """
    return request.app.state.tile_proxy  # type: ignore[no-any-return]


@router.get("/{tile_path:path}")
async def tile(
    tile_path: str,
    tile_proxy: proxy.TileProxy = fastapi.Depends(_get_proxy),  # noqa: B008
    settings: config.Settings = fastapi.Depends(_get_settings),  # noqa: B008
) -> responses.StreamingResponse:
    """Serve one map tile through the cache.

    Args:
        tile_path: Request path below the root, e.g. ``a/3/2/1.png``.
        tile_proxy: Tile dispatcher (injected via FastAPI Depends).
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        Streaming response with the tile bytes and its Content-Type (and
        Content-Encoding when the tile carries one).

    Raises:
        RoutingError: If the path does not address a tile (rendered as 404).
        OriginFetchError: If the tile is not cached and the upstream fetch
            fails (rendered as 500).
    """
    key = proxy.parse_tile_key(f"/{tile_path}", settings.shards)
    artifact = await tile_proxy.serve(key)
    return responses.StreamingResponse(
        artifact.body,
        status_code=200,
        headers=artifact.headers(),
    )
