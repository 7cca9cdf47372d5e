"""
Structured Logging: JSON-Formatted with Migration Correlation

Provides:
- JSON-formatted log output
- Context propagation (job_id / cycle_id on every line of a cycle)
- Log level filtering

Designed for centralized log aggregation (ELK, Loki). Migration events
reach collectors through the same pipeline via the `tierstore.events`
logger.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO, Union


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def parse(cls, value: Union[str, int, LogLevel]) -> LogLevel:
        if isinstance(value, str):
            return cls[value.upper()]
        return cls(value)


# Context variable for cycle-scoped fields
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})

_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


@dataclass
class LogRecord:
    """Structured log record."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = {
            "@timestamp": self.timestamp,
            "level": self.level,
            "message": self.message,
            "logger": self.logger_name,
        }
        data.update(self.extra)
        return json.dumps(data, default=str)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter carrying context-scoped fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        extra = dict(_log_context.get())

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                extra[key] = value

        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)

        log_record = LogRecord(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            extra=extra,
        )
        return log_record.to_json()


class StructuredLogger:
    """
    Structured logger with context propagation.

    Usage:
        logger = StructuredLogger("tierstore.migration")

        with logger.context(job_id="default", cycle_id="c1"):
            logger.info("Cycle started")
    """

    __slots__ = ("_logger", "_default_extra")

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._default_extra: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log(LogLevel.CRITICAL, message, **kwargs)

    def log(self, level: LogLevel, message: str, **kwargs: Any) -> None:
        self._log(level, message, **kwargs)

    def _log(self, level: LogLevel, message: str, **kwargs: Any) -> None:
        extra = {**self._default_extra, **kwargs}
        self._logger.log(level.value, message, extra=extra)

    def with_extra(self, **kwargs: Any) -> StructuredLogger:
        """Create child logger with additional default fields."""
        new_logger = StructuredLogger(self._logger.name)
        new_logger._default_extra = {**self._default_extra, **kwargs}
        return new_logger

    @staticmethod
    def context(**kwargs: Any) -> _LogContext:
        """Context manager for cycle-scoped fields."""
        return _LogContext(kwargs)


class _LogContext:
    """Context manager for adding fields to all logs."""

    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogContext:
        new_context = {**_log_context.get(), **self._fields}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token:
            _log_context.reset(self._token)


def current_context() -> dict[str, Any]:
    return dict(_log_context.get())


def setup_logging(
    level: Union[str, int, LogLevel] = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure root logger for structured logging.

    Args:
        level: Minimum log level
        json_output: Use JSON formatting
        stream: Output stream (default: stderr)
    """
    level = LogLevel.parse(level)
    root = logging.getLogger()
    root.setLevel(level.value)

    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)

    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root.addHandler(handler)

    # Suppress noisy loggers
    for noisy in ("botocore", "aiobotocore", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
