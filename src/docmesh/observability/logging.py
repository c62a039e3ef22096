"""Structured JSON logging for DocMesh.

Provides structured logging with context tracking for documents and
retry sessions.

Usage:
    from docmesh.observability.logging import configure_logging, get_logger

    # Configure at application startup
    configure_logging(log_level="INFO", json_format=True)

    # Use in your code
    logger = get_logger(__name__)
    logger.info("Polled queue", extra={"doc_id": "jobs"})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else came in through extra={}.
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, message, and context.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Add contextual information to log records."""

    def __init__(self) -> None:
        super().__init__()
        self._context: dict[str, Any] = {}

    def set_context(self, **kwargs: Any) -> None:
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self._context.items():
            setattr(record, key, value)
        return True


def configure_logging(
    log_level: str | None = None,
    json_format: bool = True,
    include_stdlib: bool = False,
) -> None:
    """Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            defaults to ``DOCMESH_LOG_LEVEL`` or INFO
        json_format: Use JSON formatter if True, plain text if False
        include_stdlib: Keep dependency loggers at the configured level
    """
    level = getattr(logging, (log_level or os.environ.get("DOCMESH_LOG_LEVEL", "INFO")).upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if not include_stdlib:
        logging.getLogger("redis").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name (usually ``__name__``)."""
    return logging.getLogger(name)


class OperationLogContext:
    """Context manager for adding fields to every log record.

    The filter is attached to the handlers of the root logger, since
    filters on a logger do not apply to records propagated from children.

    Usage:
        with OperationLogContext(doc_id="jobs"):
            await queue.poll()  # records include doc_id
    """

    def __init__(self, **context: Any) -> None:
        self._context = context
        self._filter = ContextFilter()

    def __enter__(self) -> OperationLogContext:
        self._filter.set_context(**self._context)
        for handler in logging.getLogger().handlers:
            handler.addFilter(self._filter)
        return self

    def __exit__(self, *args: Any) -> None:
        for handler in logging.getLogger().handlers:
            handler.removeFilter(self._filter)
        self._filter.clear_context()
