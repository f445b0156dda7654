"""Logging for the kanji calendar: one stderr handler on the package logger."""

import logging
import sys

LOGGER_NAME = "kanji_calendar"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logger(level: int = logging.INFO) -> logging.Logger:
    """Attach the stderr handler once; module loggers (`kanji_calendar.*`) propagate to it."""
    log = logging.getLogger(LOGGER_NAME)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        log.addHandler(handler)
        log.setLevel(level)
    return log


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return logging.getLogger(name)
