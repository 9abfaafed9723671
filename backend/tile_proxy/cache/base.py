"""Cache contract and the in-memory reference backend.

Every cache backend implements TileCacheProtocol. The dispatcher depends on
the protocol only; the concrete backend is chosen once at start-up (see
tile_proxy.cache.provider).

Contract:
    - ``load`` returns ``None`` for an absent tile. Backend failures (I/O
      errors, network errors, malformed stored records) are also reported
      as ``None``; a lookup never decides whether a response succeeds.
    - ``save`` consumes the whole stream or raises CacheError while trying.
      Callers treat save as fire-and-forget and only log its failures.
    - A backend may transform bytes on save (compression) if ``load``
      reverses the transform and reports matching content headers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from tile_proxy.cache import models

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class TileCacheProtocol(Protocol):
    """Protocol interface for storing and retrieving tiles."""

    async def load(self, key: models.TileKey) -> models.TileArtifact | None: ...

    async def save(
        self,
        key: models.TileKey,
        content: AsyncIterator[bytes],
        metadata: models.TileMetadata,
    ) -> None: ...

    async def aclose(self) -> None: ...


async def iter_chunks(data: bytes, chunk_size: int = 64 * 1024) -> AsyncIterator[bytes]:
    """Yield ``data`` as an async byte stream of at most ``chunk_size`` pieces."""
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


class InMemoryTileCache(TileCacheProtocol):
    """Simple in-memory store for tests and local development.

    Stores tile bytes in a dictionary. Data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory cache."""
        self._store: dict[models.TileKey, tuple[bytes, models.TileMetadata]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    async def load(self, key: models.TileKey) -> models.TileArtifact | None:
        """Return the stored tile, or None if the key was never saved."""
        entry = self._store.get(key)
        if entry is None:
            return None
        data, metadata = entry
        return models.TileArtifact(
            content_type=metadata.content_type,
            content_encoding=metadata.content_encoding,
            body=iter_chunks(data),
        )

    async def save(
        self,
        key: models.TileKey,
        content: AsyncIterator[bytes],
        metadata: models.TileMetadata,
    ) -> None:
        """Drain ``content`` and store it under ``key`` (last write wins)."""
        chunks = [chunk async for chunk in content]
        self._store[key] = (b"".join(chunks), metadata)
        logger.debug("Stored %s in memory (%d bytes)", key, len(self._store[key][0]))

    async def aclose(self) -> None:
        return None
