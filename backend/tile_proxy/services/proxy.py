"""Read-through tile dispatch.

TileProxy turns a TileKey into a TileArtifact:

1. Look the key up in the cache. A failed lookup counts as a miss.
2. On a hit, return the cached artifact. Nothing is written back.
3. On a miss, fetch the tile upstream, split the body with a StreamTee and
   return one branch to the caller while a detached task saves the other
   branch to the cache. A failing save is logged and never touches the
   client response; a client that stops reading never stops the save.

Duplicate concurrent misses for the same key are not coalesced: each one
fetches upstream and writes the cache independently (last write wins).

Example:
    >>> proxy = TileProxy(cache, fetcher, "tile.openstreetmap.org")
    >>> key = parse_tile_key("/a/3/2/1.png", ["a", "b", "c"])
    >>> artifact = await proxy.serve(key)
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

from tile_proxy.cache import models
from tile_proxy.core import errors
from tile_proxy.services import origin, tee

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tile_proxy.cache import base

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/png"


def _tile_path_pattern(shards: Iterable[str]) -> re.Pattern[str]:
    letters = "".join(sorted({re.escape(shard) for shard in shards}))
    return re.compile(
        rf"/([{letters}])/([0-9]{{1,2}})/([0-9]+)/([0-9]+)\.png", re.ASCII
    )


def parse_tile_key(path: str, shards: Iterable[str]) -> models.TileKey:
    """Parse a request path of the form ``/{shard}/{zoom}/{column}/{row}.png``.

    The shard must be one of ``shards``, zoom has one or two ASCII digits
    and column and row are ASCII digit sequences. The whole path must match.

    Args:
        path: Request path, without query string.
        shards: Accepted shard letters.

    Returns:
        The addressed tile.

    Raises:
        RoutingError: If the path does not match the grammar or a number
            is too long to convert.

    Example:
        >>> parse_tile_key("/a/3/2/1.png", "abc")
        TileKey(shard='a', zoom=3, column=2, row=1)
    """
    match = _tile_path_pattern(shards).fullmatch(path)
    if match is None:
        raise errors.RoutingError(path)
    shard, zoom, column, row = match.groups()
    try:
        return models.TileKey(
            shard=shard, zoom=int(zoom), column=int(column), row=int(row)
        )
    except ValueError as exc:
        # Digit runs past the interpreter's int conversion limit.
        raise errors.RoutingError(path) from exc


class TileProxy:
    """Cache-first tile dispatcher.

    Attributes:
        cache: Any TileCacheProtocol implementation.
        fetcher: Upstream fetcher.
        tile_server: Upstream host the tile URLs are built for.
    """

    def __init__(
        self,
        cache: base.TileCacheProtocol,
        fetcher: origin.OriginFetcherProtocol,
        tile_server: str,
    ) -> None:
        self.cache = cache
        self.fetcher = fetcher
        self.tile_server = tile_server
        self._background: set[asyncio.Task[None]] = set()

    async def serve(self, key: models.TileKey) -> models.TileArtifact:
        """Return the tile for ``key`` from the cache or from upstream.

        Raises:
            OriginFetchError: If the tile is not cached and upstream fails.
        """
        logger.debug("Processing request %s", key)
        artifact = await self._lookup(key)
        if artifact is not None:
            logger.debug("Cache hit %s", key)
            return artifact
        logger.debug("Cache miss %s", key)
        return await self._serve_remote(key)

    async def _lookup(self, key: models.TileKey) -> models.TileArtifact | None:
        try:
            return await self.cache.load(key)
        except errors.CacheError:
            logger.exception("Cache lookup error for %s", key)
        except Exception:
            logger.warning("Cache lookup error for %s", key, exc_info=True)
        return None

    async def _serve_remote(self, key: models.TileKey) -> models.TileArtifact:
        url = origin.build_tile_url(self.tile_server, key)
        try:
            response = await self.fetcher.fetch(url)
        except errors.OriginFetchError:
            logger.warning("Failed downloading %s", url)
            raise

        content_type = response.content_type or DEFAULT_CONTENT_TYPE
        splitter = tee.StreamTee(response.body, branches=2)
        to_client, to_cache = splitter.branches
        self._track(splitter.start())
        self._track(
            asyncio.create_task(
                self._save_quietly(key, to_cache, models.TileMetadata(content_type))
            )
        )
        return models.TileArtifact(content_type=content_type, body=to_client)

    async def _save_quietly(
        self,
        key: models.TileKey,
        content: tee.TeeBranch,
        metadata: models.TileMetadata,
    ) -> None:
        try:
            await self.cache.save(key, content, metadata)
        except Exception:
            logger.warning("Error caching %s", key, exc_info=True)
        else:
            logger.debug("Cached %s", key)
        finally:
            await content.aclose()

    def _track(self, task: asyncio.Task[None]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def pending(self) -> int:
        """Number of pump and save tasks still running."""
        return len(self._background)

    async def drain(self) -> None:
        """Wait until every pending pump and cache write has finished."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def aclose(self) -> None:
        """Finish pending cache writes, then release fetcher and cache."""
        await self.drain()
        await self.fetcher.aclose()
        await self.cache.aclose()

