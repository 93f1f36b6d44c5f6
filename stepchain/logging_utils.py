"""Logging helpers that avoid heavy dependencies."""

from __future__ import annotations

import logging
import os

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_logger(
    name: str,
    *,
    level: int | str = logging.INFO,
    fmt: str = DEFAULT_LOG_FORMAT,
    log_file: str | None = None,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure a named logger with a stream handler and, when `log_file` is set,
    a UTF-8 file handler that also captures DEBUG records.
    Existing handlers on the logger are replaced.
    """

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = propagate
    logger.debug("Logging initialized for %s (level=%s, file=%s)", name, level, log_file)
    return logger
