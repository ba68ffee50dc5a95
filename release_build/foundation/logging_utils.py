"""Logging setup for the build CLI."""

from __future__ import annotations

import logging
import os

LOGGER_NAME = "release_build"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_logger(
    *,
    verbose: bool = False,
    log_path: str | os.PathLike[str] | None = None,
    name: str = LOGGER_NAME,
) -> logging.Logger:
    """Configure the application logger (stdout + optional file)."""

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_path:
        log_dir = os.path.dirname(os.path.abspath(log_path))
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.debug("Logging initialized (verbose=%s, log_path=%s)", verbose, log_path)
    return logger
