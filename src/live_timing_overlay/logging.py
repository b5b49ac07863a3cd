"""Process-wide log setup for the overlay.

Records go to stderr only. Both `run` and `replay` write overlay views and
events to stdout as JSON lines, and a consumer piping that stream must not see
log text mixed in.

The poller hits the standings endpoint every second, so the httpx and httpcore
loggers are held at HTTPX_LOG_LEVEL (WARNING unless set) independently of
LOG_LEVEL. LOG_FORMAT replaces the default record layout.

Modules take their logger with `_LOGGER = get_logger(__name__)`.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_HTTP_CLIENT_LOGGERS = ("httpx", "httpcore")


def _resolve_level(name: Optional[str], fallback: int) -> int:
    if not name:
        return fallback
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else fallback


def _stderr_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _quiet_http_clients() -> None:
    level = _resolve_level(os.environ.get("HTTPX_LOG_LEVEL"), logging.WARNING)
    for name in _HTTP_CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install the stderr handler on first use.

    The CLI calls this again once settings are loaded; by then the handler is
    in place and only the root level follows `level`.
    """
    global _CONFIGURED
    root = logging.getLogger()
    root_level = _resolve_level(level or os.environ.get("LOG_LEVEL"), logging.INFO)
    if _CONFIGURED:
        root.setLevel(root_level)
        return

    # whatever the host (pytest, an embedding app) attached would duplicate lines
    root.handlers.clear()
    root.addHandler(_stderr_handler(fmt or os.environ.get("LOG_FORMAT") or _DEFAULT_FORMAT))
    root.setLevel(root_level)
    _quiet_http_clients()
    _CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
