"""Data models shared by the tile dispatcher and the cache backends.

A TileKey addresses one tile of the slippy-map pyramid on one server shard.
A TileArtifact is what a cache hit or an upstream fetch produces: content
headers plus a single-pass byte stream. CacheRecord is the index entry the
filesystem backend keeps per cached tile.

Example:
    Build the key for ``/a/3/2/1.png``:
        >>> from tile_proxy.cache.models import TileKey
        >>> key = TileKey(shard="a", zoom=3, column=2, row=1)
        >>> key.object_key()
        'a/2/1/3'
        >>> key.filename()
        'a-3-2-1.png'
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclasses.dataclass(frozen=True)
class TileKey:
    """Identifies one tile on one server shard.

    Zoom, column and row are not checked against the bounds of the tile
    pyramid; any non-negative integers are accepted and forwarded upstream.

    Attributes:
        shard: Server shard letter (for example "a", "b" or "c").
        zoom: Zoom level.
        column: Tile X coordinate.
        row: Tile Y coordinate.
    """

    shard: str
    zoom: int
    column: int
    row: int

    def object_key(self) -> str:
        """Return the object-storage key, ``{shard}/{column}/{row}/{zoom}``."""
        return f"{self.shard}/{self.column}/{self.row}/{self.zoom}"

    def filename(self) -> str:
        """Return the cache file name, ``{shard}-{zoom}-{column}-{row}.png``."""
        return f"{self.shard}-{self.zoom}-{self.column}-{self.row}.png"

    def __str__(self) -> str:
        return f"{self.shard}/{self.zoom}/{self.column}/{self.row}"


@dataclasses.dataclass(frozen=True)
class TileMetadata:
    """Content headers stored alongside tile bytes."""

    content_type: str
    content_encoding: str | None = None


@dataclasses.dataclass
class TileArtifact:
    """A tile ready to be streamed to a client.

    The body can be consumed exactly once. Whoever receives the artifact owns
    the body and must drain it or close it.

    Attributes:
        content_type: MIME type of the tile, e.g. "image/png".
        content_encoding: Content-Encoding of the body bytes, if any.
        body: Async iterator over the tile bytes.
    """

    content_type: str
    body: AsyncIterator[bytes]
    content_encoding: str | None = None

    def headers(self) -> dict[str, str]:
        """Return the response headers implied by the artifact."""
        headers = {"Content-Type": self.content_type}
        if self.content_encoding:
            headers["Content-Encoding"] = self.content_encoding
        return headers


@dataclasses.dataclass(frozen=True)
class CacheRecord:
    """Index entry of the filesystem backend.

    Attributes:
        key: Tile the record describes.
        filename: Name of the tile file inside the storage directory.
        content_type: MIME type reported by the upstream server.
    """

    key: TileKey
    filename: str
    content_type: str
