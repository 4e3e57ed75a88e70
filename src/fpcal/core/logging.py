# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Logging for fpcal.

Modules log through ``logging.getLogger(__name__)``. This module adds:
- Correlation IDs so every log line of a calibration round can be grouped
- Redaction of provider credentials in structured log fields
- ``configure_logging()``, driven by ``TrustSettings`` (FPCAL_LOG_*)
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import TrustSettings

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Keys whose values never reach a log sink
SENSITIVE_KEYS = {
    "authorization",
    "token",
    "secret",
    "api_key",
    "password",
}

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
) -> Generator[str, None, None]:
    """Scope a correlation ID; a new one is generated when none is given.

    The calibration aggregator opens one per round, using the round id.
    """
    cid = correlation_id or str(uuid.uuid4())
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def redact(data: Any) -> Any:
    """Recursively replace values of sensitive keys with ``[REDACTED]``."""
    if isinstance(data, dict):
        return {
            key: "[REDACTED]" if any(s in str(key).lower() for s in SENSITIVE_KEYS) else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


class CorrelationFilter(logging.Filter):
    """Stamps ``record.correlation_id`` ("-" outside a round) for text output."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; carries the correlation ID when set."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.levelno >= logging.WARNING:
            log_data["source"] = {"file": record.pathname, "line": record.lineno}

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data["extra"] = redact(record.extra_data)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    settings: TrustSettings | None = None,
) -> None:
    """Install fpcal's handlers on the root logger.

    Arguments left as ``None`` come from settings: ``FPCAL_LOG_LEVEL``,
    ``FPCAL_LOG_FORMAT`` ("json", "text", or unset to use JSON when stderr
    is not a terminal) and ``FPCAL_LOG_FILE`` (always JSON).
    """
    if settings is None:
        from .config import get_settings

        settings = get_settings()

    if level is None:
        level = settings.log_level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_format is None:
        log_format = settings.log_format.lower()
        json_format = log_format == "json" or (log_format != "text" and not sys.stderr.isatty())

    console = logging.StreamHandler(sys.stderr)
    if json_format:
        console.setFormatter(JSONFormatter())
    else:
        console.addFilter(CorrelationFilter())
        console.setFormatter(logging.Formatter(TEXT_FORMAT))
    handlers: list[logging.Handler] = [console]

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
