"""Persistent key to file index used by the filesystem cache.

The index maps a TileKey to the file holding its bytes and the content type
the upstream server reported. It is the one piece of process-wide mutable
state: every implementation serialises its own writes, so concurrent saves
for different keys never corrupt each other's entries.

Implementations:
    - InMemoryTileIndex: dictionary, for tests.
    - JsonFileTileIndex: a JSON document on disk (default).
    - PostgresTileIndex: a ``tiles`` table in PostgreSQL.

All methods are synchronous; the filesystem cache calls them from worker
threads.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from tile_proxy.cache import models
from tile_proxy.core import errors

logger = logging.getLogger(__name__)


class TileIndexProtocol(Protocol):
    """Protocol interface for the tile index."""

    def get(self, key: models.TileKey) -> models.CacheRecord | None: ...

    def put(self, record: models.CacheRecord) -> None: ...


def record_to_dict(record: models.CacheRecord) -> dict[str, object]:
    """Convert a CacheRecord into its serialised form."""
    return {
        "shard": record.key.shard,
        "zoom": record.key.zoom,
        "column": record.key.column,
        "row": record.key.row,
        "filename": record.filename,
        "content_type": record.content_type,
    }


def record_from_dict(entry: dict[str, object]) -> models.CacheRecord:
    """Convert a serialised entry back into a CacheRecord.

    Raises:
        ValueError: If a field is missing or has the wrong shape.
    """
    try:
        key = models.TileKey(
            shard=str(entry["shard"]),
            zoom=int(entry["zoom"]),  # type: ignore[call-overload]
            column=int(entry["column"]),  # type: ignore[call-overload]
            row=int(entry["row"]),  # type: ignore[call-overload]
        )
        filename = entry["filename"]
        content_type = entry["content_type"]
    except (KeyError, TypeError) as exc:
        msg = f"Malformed index entry: {entry!r}"
        raise ValueError(msg) from exc
    if not isinstance(filename, str) or not isinstance(content_type, str):
        msg = f"Malformed index entry: {entry!r}"
        raise ValueError(msg)
    return models.CacheRecord(key=key, filename=filename, content_type=content_type)


class InMemoryTileIndex(TileIndexProtocol):
    """Index held in a dictionary. Lost when the process exits."""

    def __init__(self) -> None:
        self._records: dict[models.TileKey, models.CacheRecord] = {}

    def get(self, key: models.TileKey) -> models.CacheRecord | None:
        return self._records.get(key)

    def put(self, record: models.CacheRecord) -> None:
        self._records[record.key] = record


class JsonFileTileIndex(TileIndexProtocol):
    """Index persisted as a JSON list of records.

    The whole file is read once on construction and rewritten after each
    ``put``. The rewrite goes through a temporary file and ``os.replace`` so
    a crash never leaves a truncated index behind. A missing file starts an
    empty index; an unreadable file or a malformed entry is logged and
    skipped.

    Example:
        >>> index = JsonFileTileIndex(pathlib.Path("tile-db.json"))
        >>> index.put(models.CacheRecord(key, "a-3-2-1.png", "image/png"))
        >>> index.get(key).filename
        'a-3-2-1.png'
    """

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._records: dict[models.TileKey, models.CacheRecord] = self._read()

    def _read(self) -> dict[models.TileKey, models.CacheRecord]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(
                "Ignoring unreadable tile index %s", self.path, exc_info=True
            )
            return {}
        if not isinstance(document, list):
            logger.warning("Ignoring tile index %s: not a list of records", self.path)
            return {}

        records: dict[models.TileKey, models.CacheRecord] = {}
        for entry in document:
            try:
                record = record_from_dict(entry)
            except ValueError:
                logger.warning("Skipping malformed index entry %r", entry)
                continue
            records[record.key] = record
        logger.debug("Loaded %d index entries from %s", len(records), self.path)
        return records

    def _write(self, records: dict[models.TileKey, models.CacheRecord]) -> None:
        payload = json.dumps([record_to_dict(r) for r in records.values()])
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            pathlib.Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: models.TileKey) -> models.CacheRecord | None:
        with self._lock:
            return self._records.get(key)

    def put(self, record: models.CacheRecord) -> None:
        with self._lock:
            records = {**self._records, record.key: record}
            try:
                self._write(records)
            except OSError as exc:
                msg = f"Could not persist tile index {self.path}"
                raise errors.CacheError(msg) from exc
            self._records = records


class PostgresTileIndex(TileIndexProtocol):
    """PostgreSQL-backed tile index.

    Persists index records to a ``tiles`` table keyed by the four TileKey
    fields. Creates the table on initialization. A second ``put`` for the
    same key overwrites the earlier record.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS tiles (
      shard TEXT NOT NULL,
      zoom INTEGER NOT NULL,
      tile_column BIGINT NOT NULL,
      tile_row BIGINT NOT NULL,
      filename TEXT NOT NULL,
      content_type TEXT NOT NULL,
      created_at TIMESTAMPTZ DEFAULT now(),
      PRIMARY KEY (shard, zoom, tile_column, tile_row)
    );
    """

    def __init__(self, database_url: str) -> None:
        """Initialize the index and ensure its table exists.

        Args:
            database_url: PostgreSQL connection string.
        """
        self.database_url = database_url
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        """Create a new database connection.

        Returns:
            psycopg2 connection object.
        """
        return psycopg2.connect(self.database_url)

    def _ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    def get(self, key: models.TileKey) -> models.CacheRecord | None:
        with (
            self._connection() as conn,
            conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur,
        ):
            cur.execute(
                """
                SELECT shard, zoom, tile_column, tile_row, filename, content_type
                FROM tiles
                WHERE shard = %(shard)s AND zoom = %(zoom)s
                  AND tile_column = %(tile_column)s AND tile_row = %(tile_row)s
                """,
                self._key_params(key),
            )
            row = cur.fetchone()
            if row is None:
                return None
            return self._from_row(dict(row))

    def put(self, record: models.CacheRecord) -> None:
        try:
            with self._connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO tiles (
                        shard, zoom, tile_column, tile_row, filename, content_type
                    ) VALUES (%(shard)s, %(zoom)s, %(tile_column)s, %(tile_row)s,
                        %(filename)s, %(content_type)s)
                    ON CONFLICT (shard, zoom, tile_column, tile_row) DO UPDATE SET
                        filename = EXCLUDED.filename,
                        content_type = EXCLUDED.content_type,
                        created_at = now();
                    """,
                    self._to_row(record),
                )
                conn.commit()
        except psycopg2.Error as exc:
            msg = f"Could not persist index record for {record.key}"
            raise errors.CacheError(msg) from exc

    @staticmethod
    def _key_params(key: models.TileKey) -> dict[str, object]:
        return {
            "shard": key.shard,
            "zoom": key.zoom,
            "tile_column": key.column,
            "tile_row": key.row,
        }

    @staticmethod
    def _to_row(record: models.CacheRecord) -> dict[str, object]:
        """Convert a CacheRecord to a parameter dictionary for SQL insertion."""
        row = PostgresTileIndex._key_params(record.key)
        row["filename"] = record.filename
        row["content_type"] = record.content_type
        return row

    @staticmethod
    def _from_row(row: dict[str, object]) -> models.CacheRecord:
        """Convert a database row dictionary to a CacheRecord."""
        return record_from_dict(
            {
                "shard": row.get("shard"),
                "zoom": row.get("zoom"),
                "column": row.get("tile_column"),
                "row": row.get("tile_row"),
                "filename": row.get("filename"),
                "content_type": row.get("content_type"),
            }
        )


def get_tile_index(
    index_path: pathlib.Path, database_url: str | None = None
) -> TileIndexProtocol:
    """Factory function to create the tile index.

    Args:
        index_path: Location of the JSON index file.
        database_url: PostgreSQL URL; takes precedence over ``index_path``.

    Returns:
        PostgresTileIndex when a database URL is given, JsonFileTileIndex
        otherwise.
    """
    if database_url:
        return PostgresTileIndex(database_url)
    return JsonFileTileIndex(index_path)
