"""Tests for application configuration and settings.

This module contains unit tests for the Settings Pydantic model and
application configuration logic in tile_proxy.core.config. It ensures
that default values, preset resolution, validation, directory creation
and get_settings caching work as expected.
"""

from __future__ import annotations

import pathlib

import pydantic
import pytest

from tile_proxy.core import config


def test_settings_defaults() -> None:
    """Test that Settings has expected default values."""
    settings = config.Settings()
    assert settings.tile_server == "tile.openstreetmap.org"
    assert settings.shards == ["a", "b", "c"]
    assert settings.port == 3030
    assert settings.cache_backend == "filesystem"
    assert settings.cache_lifetime_days is None
    assert settings.s3_fail_open is True
    assert settings.allow_origins == ["*"]


def test_settings_resolve_tile_server_preset() -> None:
    """Test that preset names map to their host."""
    settings = config.Settings(tile_server="OpenTopoMap")
    assert settings.tile_server == "tile.opentopomap.org"
    assert config.Settings(tile_server="tiles.example.org/").tile_server == (
        "tiles.example.org"
    )


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that environment variables override defaults."""
    monkeypatch.setenv("CACHE_BACKEND", "s3")
    monkeypatch.setenv("S3_BUCKET", "osm-maptiles")
    monkeypatch.setenv("CACHE_LIFETIME_DAYS", "30")
    monkeypatch.setenv("DEBUG", "true")
    settings = config.Settings()
    assert settings.cache_backend == "s3"
    assert settings.s3_bucket == "osm-maptiles"
    assert settings.cache_lifetime_days == 30
    assert settings.debug is True


def test_settings_bucket_alias(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the alternative bucket variable name."""
    monkeypatch.setenv("TILE_CACHE_BUCKET", "tiles-bucket")
    assert config.Settings().s3_bucket == "tiles-bucket"


@pytest.mark.parametrize(
    "overrides",
    [
        {"shards": ["ab"]},
        {"shards": ["1"]},
        {"cache_lifetime_days": 0},
        {"cache_backend": "redis"},
    ],
)
def test_settings_rejects_invalid_values(overrides: dict[str, object]) -> None:
    """Test validation of shards, lifetime and backend name."""
    with pytest.raises(pydantic.ValidationError):
        config.Settings(**overrides)  # type: ignore[arg-type]


def test_settings_ensure_directories(tmp_path: pathlib.Path) -> None:
    """Test that ensure_directories creates the filesystem cache layout."""
    storage_dir = tmp_path / "tiles"
    index_path = tmp_path / "db" / "tile-db.json"
    settings = config.Settings(storage_dir=storage_dir, index_path=index_path)
    assert not storage_dir.exists()
    settings.ensure_directories()
    assert storage_dir.is_dir()
    assert index_path.parent.is_dir()
    assert not index_path.exists()


def test_settings_ensure_directories_skips_other_backends(
    tmp_path: pathlib.Path,
) -> None:
    """Test that non-filesystem backends create nothing on disk."""
    storage_dir = tmp_path / "tiles"
    settings = config.Settings(cache_backend="memory", storage_dir=storage_dir)
    settings.ensure_directories()
    assert not storage_dir.exists()


def test_get_settings_cached(
    monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path
) -> None:
    """Test that get_settings returns cached instance."""
    monkeypatch.chdir(tmp_path)
    config.get_settings.cache_clear()
    try:
        settings1 = config.get_settings()
        settings2 = config.get_settings()
        assert settings1 is settings2
        assert (tmp_path / "tiles").is_dir()
    finally:
        config.get_settings.cache_clear()
