"""Logging setup for the devfactory service."""

from __future__ import annotations

import logging

_LOGGER_NAME = "devfactory"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single console handler to the ``devfactory`` logger."""
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Replace handlers so repeated app creation does not duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
