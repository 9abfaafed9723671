"""Object-storage tile cache on Amazon S3 (or any S3-compatible store).

One object per tile under ``{shard}/{column}/{row}/{zoom}``. Objects are
stored gzip-compressed with ``Content-Encoding: gzip`` and the upstream
``Content-Type`` kept as object metadata. ``load`` decompresses on the fly,
so callers always get back the bytes they saved.

boto3 is synchronous; every call runs in a worker thread through anyio.

Example:
    >>> cache = S3TileCache(bucket="osm-maptiles", cache_lifetime_days=30)
    >>> artifact = await cache.load(models.TileKey("a", 3, 2, 1))
"""

from __future__ import annotations

import datetime
import functools
import logging
import os
import tempfile
import zlib
from typing import TYPE_CHECKING, Any

import boto3
from anyio import to_thread
from botocore.exceptions import BotoCoreError, ClientError

from tile_proxy.cache import base, models
from tile_proxy.core import errors

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
SPOOL_MAX_SIZE = 1024 * 1024
GZIP_WBITS = 16 + zlib.MAX_WBITS
MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
NOT_MODIFIED_CODES = {"304", "NotModified"}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(functools.partial(func, *args, **kwargs))


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def resolve_region(region: str | None) -> str | None:
    """Return ``region`` or the region configured in the environment."""
    return region or os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")


class S3TileCache(base.TileCacheProtocol):
    """Cache backend storing gzip-compressed tiles in an S3 bucket.

    Attributes:
        bucket: Bucket holding the tiles.
        cache_lifetime_days: Objects last modified longer ago than this are
            treated as absent. None keeps objects forever.
        fail_open: When True, S3 errors other than "not found" are logged
            and reported as a miss. When False they raise CacheError so the
            caller can report them loudly.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        cache_lifetime_days: int | None = None,
        fail_open: bool = True,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.cache_lifetime_days = cache_lifetime_days
        self.fail_open = fail_open
        self._client = client or boto3.client(
            "s3", region_name=resolve_region(region)
        )

    def _cutoff(self) -> datetime.datetime | None:
        if not self.cache_lifetime_days:
            return None
        return _utcnow() - datetime.timedelta(days=self.cache_lifetime_days)

    async def load(self, key: models.TileKey) -> models.TileArtifact | None:
        """Fetch and decompress the object for ``key``.

        Returns:
            The cached tile, or None when the object is missing, older than
            ``cache_lifetime_days``, or (with ``fail_open``) unreadable.

        Raises:
            CacheError: Only when ``fail_open`` is False and S3 fails for a
                reason other than a missing or stale object.
        """
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key.object_key()}
        cutoff = self._cutoff()
        if cutoff is not None:
            params["IfModifiedSince"] = cutoff

        try:
            result = await _run_sync(self._client.get_object, **params)
        except ClientError as error:
            code = _error_code(error)
            if code in MISSING_CODES or code in NOT_MODIFIED_CODES:
                logger.debug("S3 miss for %s (%s)", key, code)
                return None
            return self._absorb(key, error)
        except BotoCoreError as error:
            return self._absorb(key, error)

        last_modified = result.get("LastModified")
        if cutoff is not None and last_modified is not None and last_modified < cutoff:
            logger.debug("S3 entry for %s is stale (%s)", key, last_modified)
            await _run_sync(result["Body"].close)
            return None

        content_type = result.get("ContentType") or "application/octet-stream"
        encoding = result.get("ContentEncoding")
        body = result["Body"]
        return models.TileArtifact(
            content_type=content_type,
            body=self._read_body(body, gzipped=encoding == "gzip"),
        )

    def _absorb(self, key: models.TileKey, error: Exception) -> None:
        if not self.fail_open:
            msg = f"S3 lookup failed for {key}"
            raise errors.CacheError(msg) from error
        logger.warning("S3 error for %s: %s", key, error)
        return None

    @staticmethod
    async def _read_body(streaming_body: Any, *, gzipped: bool) -> AsyncIterator[bytes]:
        decompressor = zlib.decompressobj(GZIP_WBITS) if gzipped else None
        try:
            while True:
                chunk = await _run_sync(streaming_body.read, READ_CHUNK_SIZE)
                if not chunk:
                    break
                if decompressor is None:
                    yield chunk
                    continue
                data = decompressor.decompress(chunk)
                if data:
                    yield data
            if decompressor is not None:
                tail = decompressor.flush()
                if tail:
                    yield tail
        finally:
            await _run_sync(streaming_body.close)

    async def save(
        self,
        key: models.TileKey,
        content: AsyncIterator[bytes],
        metadata: models.TileMetadata,
    ) -> None:
        """Compress ``content`` and upload it under the key's object name.

        The compressed stream is spooled to a temporary file (in memory up to
        SPOOL_MAX_SIZE, on disk past it) from a worker thread and uploaded
        once the input is drained.

        Raises:
            CacheError: If the stream fails or the upload is rejected.
        """
        compressor = zlib.compressobj(wbits=GZIP_WBITS)
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
            try:
                async for chunk in content:
                    data = compressor.compress(chunk)
                    if data:
                        await _run_sync(spool.write, data)
                await _run_sync(spool.write, compressor.flush())
                await _run_sync(spool.seek, 0)
                await _run_sync(
                    self._client.upload_fileobj,
                    spool,
                    self.bucket,
                    key.object_key(),
                    ExtraArgs={
                        "ContentType": metadata.content_type,
                        "ContentEncoding": "gzip",
                    },
                )
            except Exception as exc:
                msg = f"Could not upload {key} to s3://{self.bucket}"
                raise errors.CacheError(msg) from exc
        logger.debug("Uploaded %s to s3://%s", key, self.bucket)

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await _run_sync(close)
