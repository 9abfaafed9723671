"""Upstream tile fetching.

A thin wrapper over httpx that issues one GET per tile with a fixed
User-Agent (tile servers may block unidentified clients) and exposes the
response body as an async byte stream. There is no retry; timeouts are the
httpx defaults.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from tile_proxy.core import config, errors

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tile_proxy.cache import models

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class OriginResponse:
    """A successful upstream response whose body has not been read yet.

    Attributes:
        status_code: Upstream HTTP status (always 2xx).
        content_type: Upstream Content-Type header, if any.
        body: Async iterator over the response bytes. Closing or draining
            it releases the upstream connection.
    """

    status_code: int
    content_type: str | None
    body: AsyncIterator[bytes]


class OriginFetcherProtocol(Protocol):
    """Protocol interface for the upstream tile fetcher."""

    async def fetch(self, url: str) -> OriginResponse: ...

    async def aclose(self) -> None: ...


def build_tile_url(tile_server: str, key: models.TileKey) -> str:
    """Construct the upstream URL of a tile.

    Args:
        tile_server: Upstream host without shard prefix,
            e.g. "tile.openstreetmap.org".
        key: Tile to fetch.

    Returns:
        ``https://{shard}.{tile_server}/{zoom}/{column}/{row}.png``
    """
    return (
        f"https://{key.shard}.{tile_server}/{key.zoom}/{key.column}/{key.row}.png"
    )


class HttpxOriginFetcher(OriginFetcherProtocol):
    """Fetch tiles with an ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient, user_agent: str) -> None:
        self._client = client
        self.user_agent = user_agent

    async def fetch(self, url: str) -> OriginResponse:
        """Send one GET for ``url`` and return its streaming body.

        Raises:
            OriginFetchError: On transport errors and non-2xx statuses.
        """
        request = self._client.build_request(
            "GET", url, headers={"User-Agent": self.user_agent}
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise errors.OriginFetchError(url, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            await response.aclose()
            raise errors.OriginFetchError(url, f"status {response.status_code}")

        logger.debug("Upstream %s answered %s", url, response.status_code)
        return OriginResponse(
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            body=self._iter_body(url, response),
        )

    @staticmethod
    async def _iter_body(url: str, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise errors.OriginFetchError(url, str(exc) or type(exc).__name__) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()


def get_origin_fetcher(settings: config.Settings) -> OriginFetcherProtocol:
    """Factory function to create the production upstream fetcher.

    Args:
        settings: Application settings (User-Agent).

    Returns:
        HttpxOriginFetcher backed by a fresh ``httpx.AsyncClient``.
    """
    return HttpxOriginFetcher(httpx.AsyncClient(), settings.user_agent)
