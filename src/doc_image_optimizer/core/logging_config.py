"""Stdout logging for the optimizer CLI and its worker processes."""

import logging
import multiprocessing
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "doc-image-optimizer"

LOG_FORMATS = {
    "structured": (
        "%(asctime)s | %(name)s | %(levelname)-8s | "
        "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
    ),
    "simple": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def resolve_level(level: Optional[str] = None) -> int:
    """Level name from the argument, else ``LOG_LEVEL``, else INFO; unknown names mean INFO."""
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Configure and return a stdout logger.

    Args:
        name: Logger name
        level: Level override; ``LOG_LEVEL`` is used when omitted
        format_type: "structured" or "simple"; ``LOG_FORMAT`` takes precedence

    Calling it again for the same name only updates the level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(level))

    if not logger.handlers:
        format_name = os.getenv("LOG_FORMAT", format_type).lower()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                LOG_FORMATS.get(format_name, LOG_FORMATS["simple"]),
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    return setup_logger(name)


def configure_multiprocessing_logging() -> None:
    """Initializer of the process worker pool: one logger per worker process."""
    setup_logger(f"{ROOT_LOGGER_NAME}.{multiprocessing.current_process().name}")


logger = setup_logger()
