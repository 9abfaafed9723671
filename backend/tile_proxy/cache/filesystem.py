"""Local-disk tile cache.

Tile bytes are written to one file per key inside a storage directory and a
small persistent index (see tile_proxy.cache.index) remembers which file
holds which key and the content type to serve it with.

Writes land in a ``.part`` file that is renamed into place once the stream
is fully drained, and the index record is only written after the rename. A
load racing a save for the same key therefore sees either a miss or the
complete tile, never a truncated one.

Example:
    >>> cache = FileSystemTileCache(
    ...     pathlib.Path("tiles"),
    ...     index.JsonFileTileIndex(pathlib.Path("tile-db.json")),
    ... )
    >>> await cache.save(key, stream, models.TileMetadata("image/png"))
    >>> artifact = await cache.load(key)
"""

from __future__ import annotations

import logging
import os
import pathlib
from typing import TYPE_CHECKING

import anyio
from anyio import to_thread

from tile_proxy.cache import base, models
from tile_proxy.core import errors

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tile_proxy.cache import index

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class FileSystemTileCache(base.TileCacheProtocol):
    """Cache backend storing tiles as files on local disk.

    Attributes:
        storage_dir: Directory holding the tile files.
        index: Key to file index shared by all requests of the process.
    """

    def __init__(
        self, storage_dir: pathlib.Path, tile_index: index.TileIndexProtocol
    ) -> None:
        self.storage_dir = storage_dir
        self.index = tile_index
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, filename: str) -> pathlib.Path:
        return self.storage_dir / pathlib.PurePath(filename).name

    async def load(self, key: models.TileKey) -> models.TileArtifact | None:
        """Open the cached file for ``key``.

        Returns:
            The cached tile, or None when the key is not indexed, the file is
            gone, or the index or disk cannot be read.
        """
        try:
            record = await to_thread.run_sync(self.index.get, key)
        except Exception:
            logger.warning("Index lookup failed for %s", key, exc_info=True)
            return None
        logger.debug("Search in index for %s: %s", key, record)
        if record is None:
            return None

        try:
            handle = await anyio.open_file(self._path_for(record.filename), "rb")
        except OSError:
            logger.warning(
                "Indexed tile file for %s is unreadable", key, exc_info=True
            )
            return None

        return models.TileArtifact(
            content_type=record.content_type,
            body=self._read_chunks(handle),
        )

    @staticmethod
    async def _read_chunks(handle: anyio.AsyncFile[bytes]) -> AsyncIterator[bytes]:
        async with handle:
            while chunk := await handle.read(READ_CHUNK_SIZE):
                yield chunk

    async def save(
        self,
        key: models.TileKey,
        content: AsyncIterator[bytes],
        metadata: models.TileMetadata,
    ) -> None:
        """Write ``content`` to the tile file and index it.

        Raises:
            CacheError: If the stream fails or the file or index cannot be
                written. No partial file is left behind.
        """
        filename = key.filename()
        target = self._path_for(filename)
        partial = target.with_name(f"{target.name}.{os.getpid()}.{id(content)}.part")
        size = 0
        renamed = False
        try:
            async with await anyio.open_file(partial, "wb") as handle:
                async for chunk in content:
                    await handle.write(chunk)
                    size += len(chunk)
            await to_thread.run_sync(os.replace, partial, target)
            renamed = True
        except Exception as exc:
            msg = f"Could not write tile file for {key}"
            raise errors.CacheError(msg) from exc
        finally:
            if not renamed:
                self._discard(partial)

        record = models.CacheRecord(
            key=key, filename=filename, content_type=metadata.content_type
        )
        try:
            await to_thread.run_sync(self.index.put, record)
        except errors.CacheError:
            raise
        except Exception as exc:
            msg = f"Could not index tile {key}"
            raise errors.CacheError(msg) from exc
        logger.debug("Wrote %s to %s (%d bytes)", key, target, size)

    @staticmethod
    def _discard(path: pathlib.Path) -> None:
        path.unlink(missing_ok=True)

    async def aclose(self) -> None:
        return None
