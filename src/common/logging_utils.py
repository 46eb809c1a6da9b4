"""Centralized logging helpers.

Every module logs through ``logging.getLogger(__name__)``; this module owns the
root configuration and the structured ``extra`` payload shared by all
components, so log records can be filtered by event/component/action.
"""
from __future__ import annotations

import logging
import os
import sys
import time
import urllib.parse
from typing import Any, Dict, Iterable, Optional

from constants import Constants

_STRUCTURED_PREFIX = "ctx_"
_SENSITIVE_QUERY_KEYS = {"token", "access_token", "api_key", "apikey", "key", "password", "secret"}


class StructuredFormatter(logging.Formatter):
    """Formatter that appends structured ``extra_context`` fields at DEBUG level."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        if record.levelno > logging.DEBUG:
            return base
        fields = {
            key[len(_STRUCTURED_PREFIX):]: value
            for key, value in record.__dict__.items()
            if key.startswith(_STRUCTURED_PREFIX)
        }
        if not fields:
            return base
        rendered = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{base} [{rendered}]"


def configure_logging(log_file: Optional[str] = None) -> None:
    """Configure the root logger.

    The level is read from ``PKGMATCH_LOG_LEVEL`` (default INFO). Console output
    goes to stderr; ``log_file`` adds a file handler with timestamps.
    """
    level_name = os.environ.get(Constants.ENV_LOG_LEVEL, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter(Constants.LOG_FORMAT))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            StructuredFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        root.addHandler(file_handler)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records.

    ``None`` values are dropped and keys are prefixed so they never collide with
    reserved ``LogRecord`` attributes.
    """
    return {f"{_STRUCTURED_PREFIX}{key}": value for key, value in fields.items() if value is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when ``logger`` would emit DEBUG records."""
    return logger.isEnabledFor(logging.DEBUG)


def redact(value: str) -> str:
    """Mask all but the first few characters of a secret."""
    if len(value) <= 4:
        return "****"
    return value[:4] + "****"


def safe_url(url: str) -> str:
    """Return ``url`` with userinfo and sensitive query values redacted."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return "<invalid url>"
    netloc = parts.netloc
    if "@" in netloc:
        netloc = "****@" + netloc.rsplit("@", 1)[1]
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    cleaned = [
        (key, redact(value) if key.lower() in _SENSITIVE_QUERY_KEYS else value)
        for key, value in query
    ]
    return urllib.parse.urlunsplit(
        (parts.scheme, netloc, parts.path, urllib.parse.urlencode(cleaned), parts.fragment)
    )


def log_discovered_files(logger: logging.Logger, component: str, files: Iterable[str]) -> None:
    """Emit one DEBUG record summarizing files discovered by a directory walk."""
    listed = list(files)
    logger.debug(
        "Discovered %d files",
        len(listed),
        extra=extra_context(
            event="discovery",
            component=component,
            action="walk",
            count=len(listed),
        ),
    )


class Timer:
    """Context manager measuring wall-clock duration."""

    def __init__(self) -> None:
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds; usable both inside and after the block."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
