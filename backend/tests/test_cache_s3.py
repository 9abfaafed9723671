"""Tests for the S3 tile cache using moto's in-process AWS mock.

These tests verify that:
    - tiles round-trip through gzip compression unchanged,
    - bodies larger than the in-memory spool are written off the event loop,
    - objects are stored under ``{shard}/{column}/{row}/{zoom}`` with
      ``Content-Encoding: gzip`` and the upstream Content-Type,
    - missing keys and entries older than cache_lifetime_days are absent,
    - other S3 errors are absent when failing open and CacheError otherwise.
"""

from __future__ import annotations

import datetime
import gzip
import os
from typing import TYPE_CHECKING, Any

import boto3
import doubles
import pytest
from moto import mock_aws

from tile_proxy.cache import base, models, s3
from tile_proxy.core import errors

if TYPE_CHECKING:
    from collections.abc import Iterator

BUCKET = "osm-maptiles"
PNG = models.TileMetadata("image/png")


@pytest.fixture
def s3_client() -> Iterator[Any]:
    """Mocked S3 client with an empty tile bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.mark.asyncio
async def test_save_then_load_round_trip(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test the round-trip law for the S3 backend."""
    cache = s3.S3TileCache(BUCKET, client=s3_client)

    await cache.save(tile_key, base.iter_chunks(doubles.PNG_BYTES, 64), PNG)
    artifact = await cache.load(tile_key)

    assert artifact is not None
    assert artifact.content_type == "image/png"
    assert artifact.content_encoding is None
    assert await doubles.read_all(artifact.body) == doubles.PNG_BYTES


@pytest.mark.asyncio
async def test_save_stores_gzip_object(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test the stored object layout and headers."""
    cache = s3.S3TileCache(BUCKET, client=s3_client)

    await cache.save(tile_key, base.iter_chunks(doubles.PNG_BYTES), PNG)

    stored = s3_client.get_object(Bucket=BUCKET, Key="a/2/1/3")
    assert stored["ContentType"] == "image/png"
    assert stored["ContentEncoding"] == "gzip"
    assert gzip.decompress(stored["Body"].read()) == doubles.PNG_BYTES


@pytest.mark.asyncio
async def test_save_spools_large_body_off_the_event_loop(
    s3_client: Any, tile_key: models.TileKey, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that a body past the spool limit is written from worker threads."""
    offloaded: list[str] = []
    run_sync = s3._run_sync

    async def recording_run_sync(func: Any, /, *args: Any, **kwargs: Any) -> Any:
        offloaded.append(getattr(func, "__name__", repr(func)))
        return await run_sync(func, *args, **kwargs)

    monkeypatch.setattr(s3, "SPOOL_MAX_SIZE", 64)
    monkeypatch.setattr(s3, "_run_sync", recording_run_sync)
    body = os.urandom(256 * 1024)
    cache = s3.S3TileCache(BUCKET, client=s3_client)

    await cache.save(tile_key, base.iter_chunks(body, 4096), PNG)
    artifact = await cache.load(tile_key)

    assert "write" in offloaded
    assert "seek" in offloaded
    assert artifact is not None
    assert await doubles.read_all(artifact.body) == body


@pytest.mark.asyncio
async def test_load_missing_key_is_absent(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that a never-saved key is a miss."""
    cache = s3.S3TileCache(BUCKET, client=s3_client)
    assert await cache.load(tile_key) is None


@pytest.mark.asyncio
async def test_load_uncompressed_object(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that objects stored without gzip are passed through."""
    s3_client.put_object(
        Bucket=BUCKET, Key="a/2/1/3", Body=b"plain", ContentType="image/png"
    )
    cache = s3.S3TileCache(BUCKET, client=s3_client)

    artifact = await cache.load(tile_key)

    assert artifact is not None
    assert await doubles.read_all(artifact.body) == b"plain"


@pytest.mark.asyncio
async def test_fresh_entry_within_lifetime_is_hit(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that an entry younger than the lifetime is served."""
    cache = s3.S3TileCache(BUCKET, client=s3_client, cache_lifetime_days=7)
    await cache.save(tile_key, base.iter_chunks(b"tile"), PNG)

    artifact = await cache.load(tile_key)

    assert artifact is not None
    assert await doubles.read_all(artifact.body) == b"tile"


@pytest.mark.asyncio
async def test_stale_entry_is_absent(
    monkeypatch: pytest.MonkeyPatch, s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that an entry older than cache_lifetime_days is a miss."""
    cache = s3.S3TileCache(BUCKET, client=s3_client, cache_lifetime_days=7)
    await cache.save(tile_key, base.iter_chunks(b"tile"), PNG)

    later = datetime.datetime.now(tz=datetime.UTC) + datetime.timedelta(days=30)
    monkeypatch.setattr(s3, "_utcnow", lambda: later)

    assert await cache.load(tile_key) is None


@pytest.mark.asyncio
async def test_stale_entry_is_kept_without_lifetime(
    monkeypatch: pytest.MonkeyPatch, s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that without a lifetime old entries are still served."""
    cache = s3.S3TileCache(BUCKET, client=s3_client)
    await cache.save(tile_key, base.iter_chunks(b"tile"), PNG)

    later = datetime.datetime.now(tz=datetime.UTC) + datetime.timedelta(days=3650)
    monkeypatch.setattr(s3, "_utcnow", lambda: later)

    assert await cache.load(tile_key) is not None


@pytest.mark.asyncio
async def test_backend_error_fails_open(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that an unexpected S3 error is a miss by default."""
    cache = s3.S3TileCache("no-such-bucket", client=s3_client)
    assert await cache.load(tile_key) is None


@pytest.mark.asyncio
async def test_backend_error_fails_loud(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that fail_open=False surfaces unexpected S3 errors."""
    cache = s3.S3TileCache("no-such-bucket", client=s3_client, fail_open=False)
    with pytest.raises(errors.CacheError):
        await cache.load(tile_key)


@pytest.mark.asyncio
async def test_save_to_missing_bucket_raises(
    s3_client: Any, tile_key: models.TileKey
) -> None:
    """Test that upload failures are reported as CacheError."""
    cache = s3.S3TileCache("no-such-bucket", client=s3_client)
    with pytest.raises(errors.CacheError):
        await cache.save(tile_key, base.iter_chunks(b"tile"), PNG)


def test_resolve_region_falls_back_to_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Test the region fallback chain."""
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-central-1")
    assert s3.resolve_region(None) == "eu-central-1"
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    assert s3.resolve_region(None) == "eu-west-1"
    assert s3.resolve_region("us-west-2") == "us-west-2"
