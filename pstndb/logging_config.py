"""Logging configuration for pstndb."""

import sys

from loguru import logger


def configure_logging(*, verbose: bool = False) -> None:
    """Configure loguru with appropriate level.

    The library itself only emits records; applications call this once.
    """
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(sys.stderr, level=level,
               format="{time:HH:mm:ss} {level: <8} {extra[component]}: {message}")
    logger.configure(extra={"component": "pstndb"})


def component_logger(component: str, log=None):
    """Return ``log`` or the shared loguru logger bound to ``component``."""
    if log is not None:
        return log
    return logger.bind(component=component)
