"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Context travels in
``extra={...}`` and ends up under the ``extra`` key of each JSON line.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

_RESERVED_LOG_RECORD_ATTRS: set[str] = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

# Chatty HTTP client loggers.
_QUIET_LOGGERS = ("urllib3", "openai", "httpx", "httpcore")


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, debug: bool = False) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    if debug:
        logging.getLogger("canvas_personas").setLevel(logging.DEBUG)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


@contextmanager
def timed(logger: logging.Logger, operation: str, **details: object) -> Iterator[dict[str, object]]:
    """Log the duration of the enclosed block at DEBUG level.

    The yielded dict can be updated inside the block; its contents are logged
    alongside the duration. ``success`` is recorded as False if the block raises.
    """

    context: dict[str, object] = dict(details)
    started = time.monotonic()
    success = True
    try:
        yield context
    except BaseException:
        success = False
        raise
    finally:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Operation timing",
                extra={
                    "operation": operation,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                    "success": context.pop("success", success),
                    **context,
                },
            )
