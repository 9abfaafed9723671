"""Logging setup for the tile proxy process."""

import logging

from tile_proxy.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: config.Settings) -> logging.Logger:
    """Configure the package logger from settings.

    The ``tile_proxy`` logger logs at DEBUG when ``settings.debug`` is set and
    at INFO otherwise. Calling this more than once does not stack handlers.

    Args:
        settings: Application settings.

    Returns:
        The configured package logger.
    """
    package_logger = logging.getLogger("tile_proxy")
    package_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    return package_logger
