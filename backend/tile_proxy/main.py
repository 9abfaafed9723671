"""FastAPI application entrypoint and configuration.

This module provides the application factory of the tile proxy. It wires
the cache backend and the upstream fetcher into a TileProxy during the
application lifespan, installs the plain-text error responses, exposes a
health check and mounts the catch-all tile route.

Example:
    The application can be run with uvicorn:
        $ uvicorn tile_proxy.main:create_app --factory --port 3030

    Or through the package entry point:
        $ python -m tile_proxy
"""

import contextlib
import logging
from collections.abc import AsyncIterator

import fastapi
import uvicorn
from fastapi import responses
from fastapi.middleware import cors

from tile_proxy.api import tiles
from tile_proxy.cache import provider
from tile_proxy.core import config, errors, logs
from tile_proxy.services import origin, proxy

logger = logging.getLogger(__name__)

NOT_FOUND_BODY = "Not Found"
SERVER_ERROR_BODY = "Internal Server Error"


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Build the tile dispatcher on start-up and close it on shutdown.

    Shutdown waits for cache writes still in flight before the cache backend
    and the upstream client are closed.
    """
    settings: config.Settings = app.state.settings
    tile_proxy = proxy.TileProxy(
        cache=provider.get_tile_cache(settings),
        fetcher=origin.get_origin_fetcher(settings),
        tile_server=settings.tile_server,
    )
    app.state.tile_proxy = tile_proxy
    logger.info("Started %s proxy", settings.tile_server)
    try:
        yield
    finally:
        await tile_proxy.aclose()
        logger.info("Stopped %s proxy", settings.tile_server)


async def _not_found(
    _request: fastapi.Request, exc: Exception
) -> responses.PlainTextResponse:
    logger.debug("No tile route for %s", exc)
    return responses.PlainTextResponse(NOT_FOUND_BODY, status_code=404)


async def _server_error(
    _request: fastapi.Request, _exc: Exception
) -> responses.PlainTextResponse:
    # Unexpected errors are re-raised to the server after this response is
    # sent and logged there; upstream failures are logged by the dispatcher.
    return responses.PlainTextResponse(SERVER_ERROR_BODY, status_code=500)


def create_app(settings: config.Settings | None = None) -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Sets up logging and CORS, the health check endpoint, the tile route and
    the exception handlers that turn routing failures into 404 and upstream
    or unexpected failures into 500 responses with plain-text bodies.

    Args:
        settings: Settings to run with. Defaults to get_settings().

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    settings = settings or config.get_settings()
    logs.configure_logging(settings)

    app = fastapi.FastAPI(title="Tile Proxy", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    app.include_router(tiles.router)

    app.add_exception_handler(errors.RoutingError, _not_found)
    app.add_exception_handler(errors.OriginFetchError, _server_error)
    app.add_exception_handler(Exception, _server_error)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    return app


def run() -> None:
    """Serve the application with uvicorn on the configured address."""
    settings = config.get_settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
