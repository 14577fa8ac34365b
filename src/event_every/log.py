"""Logging setup shared by the event-every CLI and server.

Records are written to *stderr* as pipe-separated fields with an ISO 8601
timestamp.  The HTTP client libraries used for OpenRouter and page
scraping log every request; they are held at WARNING unless the process
runs at DEBUG (``--verbose``).
"""

from __future__ import annotations

import logging
import sys

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Marks the handler owned by setup_logging; uvicorn and pytest add their own.
_HANDLER_ATTR = "_event_every_log_handler"

NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def _owned_handler(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            return handler
    return None


def _set_noisy_levels(numeric_level: int) -> None:
    # NOTSET hands the decision back to the root level.
    quiet = logging.NOTSET if numeric_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger for event-every.

    Repeated calls reuse the handler installed by the first call and only
    change levels, so ``--verbose`` can be applied after an INFO setup.

    Args:
        level: A standard logging level name (e.g. ``"DEBUG"``).

    Raises:
        ValueError: If *level* is not a recognised logging level string.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level!r}")

    root = logging.getLogger()
    root.setLevel(numeric_level)

    handler = _owned_handler(root)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        setattr(handler, _HANDLER_ATTR, True)
        root.addHandler(handler)
    handler.setLevel(numeric_level)

    _set_noisy_levels(numeric_level)
