"""Logging configuration for the realty listings site.

One stderr handler on the package logger, shared by the API server
and the CLI client. AWS and HTTP libraries are held at WARNING or
above since their DEBUG output carries signed URLs and credentials.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from realty_listings.config import Config

LOGGER_NAME = "realty_listings"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


class _PackageHandler(logging.StreamHandler):
    """Marks the handler installed by ``setup_logging``."""


def _package_handler(logger: logging.Logger) -> _PackageHandler | None:
    return next((h for h in logger.handlers if isinstance(h, _PackageHandler)), None)


def setup_logging(config: Config) -> None:
    """Configure the package logger from ``config.log_level``.

    Safe to call repeatedly; later calls only change levels.
    """
    level = getattr(logging, config.log_level.value)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    handler = _package_handler(logger)
    if handler is None:
        handler = _PackageHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
    handler.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.debug("Logging configured with level %s", config.log_level.value)


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, nested under the package logger."""
    if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """Remove the package handler and restore propagation (used by tests)."""
    logger = logging.getLogger(LOGGER_NAME)
    handler = _package_handler(logger)
    if handler is not None:
        logger.removeHandler(handler)
    logger.propagate = True
