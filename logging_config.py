"""
logging_config.py - Shared logging setup for the verification service.

Every module logs through `get_logger(__name__)` using key/value lines:

    verify_complete | scored_by=rule | score=70 | mismatches=1
"""

from __future__ import annotations

import functools
import logging
import os
import sys
from typing import Callable, TypeVar

T = TypeVar("T")

DEFAULT_FORMAT = "%(asctime)s [%(name)-16s] %(levelname)-7s %(message)s"
JSON_FORMAT = (
    '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
    '"module":"%(name)s","message":"%(message)s"}'
)


def level_from_env(default: int = logging.INFO) -> int:
    """Resolve LOG_LEVEL (name or number) into a logging level."""
    raw = os.getenv("LOG_LEVEL", "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    resolved = logging.getLevelName(raw.upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: int | None = None, json_format: bool = False) -> None:
    """Configure the root logger.

    Args:
        level: Logging level. Falls back to LOG_LEVEL, then INFO.
        json_format: If True, emit JSON-like log lines.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else level_from_env())
    root.handlers.clear()

    formatter = logging.Formatter(
        JSON_FORMAT if json_format else DEFAULT_FORMAT,
        datefmt="%H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)


def graceful(default_factory: Callable[[], T], log_level: int = logging.ERROR):
    """Decorator that logs any exception and returns a default value instead.

    Used on side channels (audit writes) that must never break a
    verification request.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (KeyboardInterrupt, SystemExit):
                raise
            except Exception as exc:
                logger = logging.getLogger(func.__module__)
                logger.log(
                    log_level,
                    "%s failed: %s: %s",
                    func.__qualname__,
                    type(exc).__name__,
                    exc,
                    exc_info=True,
                )
                return default_factory()

        return wrapper

    return decorator
