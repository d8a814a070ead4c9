"""Logging helpers shared by every larder module.

Modules log through ``logging.getLogger(__name__)``; these helpers keep the
structured ``extra=`` payloads, URL redaction and timing consistent.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from larder.constants import Constants

_SECRET_RE = re.compile(r"(?i)(token|password|secret|authorization)=([^&\s]+)")


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for library consumers and tests.

    Args:
        level: Explicit level name; falls back to ``LARDER_LOG_LEVEL`` then INFO.
    """
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=Constants.LOG_FORMAT)
    logging.getLogger().setLevel(numeric)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping empty values."""
    return {k: v for k, v in fields.items() if v is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records from ``logger`` would be emitted."""
    return logger.isEnabledFor(logging.DEBUG)


def safe_url(url: str) -> str:
    """Strip user info and query strings from a URL before logging it."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)
    netloc = parts.hostname or ""
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, "", ""))


def redact(text: str) -> str:
    """Mask secret-looking ``key=value`` pairs in free text."""
    return _SECRET_RE.sub(lambda m: f"{m.group(1)}=***", text)


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.monotonic()
        self._end = None
        return self

    def __exit__(self, *exc: Any) -> None:
        self._end = time.monotonic()

    def duration_ms(self) -> int:
        """Elapsed milliseconds, up to now when still running."""
        end = self._end if self._end is not None else time.monotonic()
        return int((end - self._start) * 1000)
