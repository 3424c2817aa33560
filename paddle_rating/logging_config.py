"""
Logging setup for the API process, scripts and tests.

LOG_LEVEL=DEBUG (or setup_logging(level="DEBUG")) switches to the verbose format
with logger name and line numbers; anything above DEBUG uses a one-letter prefix.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Literal, Optional

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def level_from_name(name: Optional[str] = None, default: LogLevel = "INFO") -> int:
    level_str = (name or os.getenv("LOG_LEVEL", default)).upper()
    return _LEVELS.get(level_str, logging.INFO)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    numeric_level = level_from_name(level)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    is_debug = numeric_level <= logging.DEBUG
    fmt_verbose = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(funcName)s | %(message)s"
    fmt_concise = "%(levelname).1s %(name)s: %(message)s"
    fmt = fmt_verbose if is_debug else fmt_concise

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt="%H:%M:%S"))

    root.setLevel(numeric_level)
    root.addHandler(handler)

    # uvicorn logs every request at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.INFO if is_debug else logging.WARNING)
