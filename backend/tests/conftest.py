"""Fixtures shared by the tile proxy tests."""

from __future__ import annotations

import doubles
import pytest

from tile_proxy.cache import models


@pytest.fixture
def tile_key() -> models.TileKey:
    """The tile addressed by ``/a/3/2/1.png``."""
    return models.TileKey(shard="a", zoom=3, column=2, row=1)


@pytest.fixture
def fetcher() -> doubles.FakeFetcher:
    """Upstream double answering every request with PNG bytes."""
    return doubles.FakeFetcher()


@pytest.fixture
def recording_cache() -> doubles.RecordingCache:
    """Empty in-memory cache that records loads and saves."""
    return doubles.RecordingCache()
