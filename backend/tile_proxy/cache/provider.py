"""Construction-time choice of the cache backend."""

from __future__ import annotations

import logging

from tile_proxy.cache import base, filesystem, index, s3
from tile_proxy.core import config, errors

logger = logging.getLogger(__name__)


def get_tile_cache(settings: config.Settings) -> base.TileCacheProtocol:
    """Factory function to create the configured tile cache.

    Args:
        settings: Application settings selecting and configuring the backend.

    Returns:
        FileSystemTileCache, S3TileCache or InMemoryTileCache, depending on
        ``settings.cache_backend``.

    Raises:
        ConfigurationError: If the s3 backend is selected without a bucket.
    """
    if settings.cache_backend == "s3":
        if not settings.s3_bucket:
            msg = "cache_backend 's3' requires S3_BUCKET to be set"
            raise errors.ConfigurationError(msg)
        logger.info("Using S3 tile cache s3://%s", settings.s3_bucket)
        return s3.S3TileCache(
            settings.s3_bucket,
            region=settings.s3_region,
            cache_lifetime_days=settings.cache_lifetime_days,
            fail_open=settings.s3_fail_open,
        )

    if settings.cache_backend == "memory":
        logger.info("Using in-memory tile cache")
        return base.InMemoryTileCache()

    logger.info("Using filesystem tile cache in %s", settings.storage_dir)
    tile_index = index.get_tile_index(
        settings.index_path, settings.index_database_url
    )
    return filesystem.FileSystemTileCache(settings.storage_dir, tile_index)
