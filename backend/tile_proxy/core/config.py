"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings cover the
upstream tile server, the listener address, the cache backend selection and
the options of each backend.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from tile_proxy.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.tile_server)

    Environment variables can override defaults:
        >>> TILE_SERVER=OpenTopoMap
        >>> CACHE_BACKEND=s3
        >>> S3_BUCKET=osm-maptiles
        >>> CACHE_LIFETIME_DAYS=30
"""

import functools
import pathlib
from typing import Literal

import pydantic
import pydantic_settings

TILE_SERVERS: dict[str, str] = {
    "OpenStreetMap": "tile.openstreetmap.org",
    "OpenTopoMap": "tile.opentopomap.org",
}

CacheBackend = Literal["filesystem", "s3", "memory"]


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.
    The filesystem cache directories are created on demand via
    ensure_directories().

    Attributes:
        tile_server: Upstream tile host, or one of the TILE_SERVERS presets.
        shards: Accepted shard letters of the upstream sharding scheme.
        user_agent: Fixed User-Agent sent with every upstream request.
        host: Interface the HTTP listener binds to.
        port: Port the HTTP listener binds to.
        debug: Enable verbose diagnostic logging.
        allow_origins: Allowed CORS origins (["*"] allows all).
        cache_backend: Which cache backend to construct at start-up.
        storage_dir: Directory holding cached tile files (filesystem backend).
        index_path: JSON index file (filesystem backend).
        index_database_url: PostgreSQL URL; replaces the JSON index when set.
        s3_bucket: Bucket holding cached tiles (s3 backend).
        s3_region: Bucket region; falls back to AWS_REGION/AWS_DEFAULT_REGION.
        cache_lifetime_days: Entries older than this are treated as absent.
        s3_fail_open: Treat unexpected S3 errors as cache misses.
    """

    tile_server: str = TILE_SERVERS["OpenStreetMap"]
    shards: list[str] = ["a", "b", "c"]
    user_agent: str = "TileProxy/0.1.0"
    host: str = "127.0.0.1"
    port: int = 3030
    debug: bool = False
    allow_origins: list[str] = ["*"]

    cache_backend: CacheBackend = "filesystem"
    storage_dir: pathlib.Path = pathlib.Path("tiles")
    index_path: pathlib.Path = pathlib.Path("tile-db.json")
    index_database_url: str | None = None

    s3_bucket: str | None = pydantic.Field(
        default=None,
        validation_alias=pydantic.AliasChoices("S3_BUCKET", "TILE_CACHE_BUCKET"),
    )
    s3_region: str | None = None
    cache_lifetime_days: int | None = pydantic.Field(default=None, ge=1)
    s3_fail_open: bool = True

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @pydantic.field_validator("tile_server")
    @classmethod
    def _resolve_tile_server(cls, value: str) -> str:
        return TILE_SERVERS.get(value, value).strip().strip("/")

    @pydantic.field_validator("shards")
    @classmethod
    def _validate_shards(cls, value: list[str]) -> list[str]:
        for shard in value:
            if len(shard) != 1 or not shard.isalpha():
                msg = f"Shard must be a single letter, got {shard!r}"
                raise ValueError(msg)
        return value

    def ensure_directories(self) -> None:
        """Create local directories for the filesystem cache.

        Creates storage_dir for tile files and the parent directory of
        index_path if they don't already exist. Other backends need no
        local directories.
        """
        if self.cache_backend != "filesystem":
            return
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Directories are created on first call.

    Returns:
        Settings instance with all configuration values populated and
        directories ensured to exist.

    Example:
        The settings are cached, so multiple calls return the same instance:
            >>> settings1 = get_settings()
            >>> settings2 = get_settings()
            >>> assert settings1 is settings2  # Same instance
    """
    settings = Settings()
    settings.ensure_directories()
    return settings
