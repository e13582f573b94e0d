"""
Logging utilities for the embedding cache.

Provides JSON or human-readable log lines with request context support so
cache activity can be traced back to the user and request that caused it.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


CONTEXT_FIELDS = ("request_id", "user_id", "operation")

PACKAGE_LOGGERS = ("embedding_cache", "contract_analysis")

# Handlers installed by configure_logging, by logger name
_HANDLERS: Dict[str, logging.Handler] = {}


class LogContext:
    """
    Context manager for adding request context fields to log records.

    Example:
        >>> with LogContext(request_id="abc", user_id="u-1"):
        ...     logger.info("Partitioning chunks")  # Will include both fields
    """

    _current: Optional["LogContext"] = None

    def __init__(
        self,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        operation: Optional[str] = None,
        **extra: Any,
    ):
        context = {
            "request_id": request_id,
            "user_id": user_id,
            "operation": operation,
            **extra,
        }
        self.context = {k: v for k, v in context.items() if v is not None}
        self._previous: Optional["LogContext"] = None

    def __enter__(self) -> "LogContext":
        self._previous = LogContext._current
        LogContext._current = self
        return self

    def __exit__(self, *args) -> None:
        LogContext._current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Get the active context fields, merged with enclosing contexts."""
        merged: Dict[str, Any] = {}
        chain = []
        node = cls._current
        while node is not None:
            chain.append(node)
            node = node._previous
        for ctx in reversed(chain):
            merged.update(ctx.context)
        return merged


class ContextFilter(logging.Filter):
    """Copies the active LogContext onto each record passing through."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in LogContext.get_current().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Context fields if present (request_id, user_id, operation)
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with request context.

    Format: TIMESTAMP - LOGGER - LEVEL - MESSAGE [request_id=X user_id=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        else:
            fmt = "%(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def configure_logging(
    level: int = logging.INFO,
    include_timestamp: bool = True,
    structured: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure logging for the embedding cache packages.

    Attaches a single stream handler to each package logger. Calling this
    again replaces the handler from the previous call instead of adding a
    second one.

    Args:
        level: Logging level (default: INFO)
        include_timestamp: Whether to include timestamp in log messages
        structured: If True, output JSON-structured logs; if False, human-readable
        stream: Output stream (default: stdout)
    """
    if structured:
        formatter: logging.Formatter = StructuredFormatter(include_timestamp=include_timestamp)
    else:
        formatter = HumanReadableFormatter(include_timestamp=include_timestamp)

    for name in PACKAGE_LOGGERS:
        package_logger = logging.getLogger(name)
        package_logger.setLevel(level)

        previous = _HANDLERS.pop(name, None)
        if previous is not None:
            package_logger.removeHandler(previous)

        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        package_logger.addHandler(handler)
        _HANDLERS[name] = handler
