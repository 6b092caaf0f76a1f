"""Structured logging helpers shared by every component.

Log records carry their machine-readable context through ``extra=`` so a
JSON handler can pick it up, while the default format stays human readable.
"""
from __future__ import annotations

import logging
import os
import time
import urllib.parse
from typing import Any, Dict, Optional

from ..constants import Constants

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, honouring MODULEFAST_LOG_LEVEL."""
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=Constants.LOG_FORMAT)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**kwargs: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping, dropping None values and reserved record keys."""
    context: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if key in _RESERVED:
            key = f"ctx_{key}"
        context[key] = value
    return context


def safe_url(url: str) -> str:
    """Strip credentials and query strings from a URL before it is logged."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return "<invalid-url>"
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urllib.parse.urlunsplit((parts.scheme, host, parts.path, "", ""))


class Timer:
    """Context manager measuring elapsed wall time."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000, 2)
