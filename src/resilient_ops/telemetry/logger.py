"""
Structured logging for resilient-ops.

Provides context-aware logging with sensitive data masking. Raw failure text
from wrapped operations can carry credentials, so every message and field is
masked before it is emitted.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Iterator

# Context variable for operation-scoped logging context
_log_context: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to standard logging level."""
        return getattr(logging, self.value)


@dataclass
class LogContext:
    """Operation-scoped logging context.

    Attributes:
        operation: Logical operation name
        entity_id: Entity the operation acts on
        breaker_key: Circuit breaker key of the operation
        extra: Additional context fields
    """

    operation: str | None = None
    entity_id: str | None = None
    breaker_key: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        if self.operation:
            result["operation"] = self.operation
        if self.entity_id:
            result["entity_id"] = self.entity_id
        if self.breaker_key:
            result["breaker_key"] = self.breaker_key
        result.update(self.extra)
        return result

    def with_extra(self, **kwargs: Any) -> LogContext:
        """Create new context with additional fields."""
        return LogContext(
            operation=self.operation,
            entity_id=self.entity_id,
            breaker_key=self.breaker_key,
            extra={**self.extra, **kwargs},
        )


def get_log_context() -> LogContext:
    """Get current logging context."""
    data = _log_context.get()
    if not data:
        return LogContext()
    known = {k: data[k] for k in ("operation", "entity_id", "breaker_key") if k in data}
    extra = {k: v for k, v in data.items() if k not in known}
    return LogContext(**known, extra=extra)


def set_log_context(context: LogContext) -> None:
    """Set logging context for current async context."""
    _log_context.set(context.to_dict())


def clear_log_context() -> None:
    """Clear logging context."""
    _log_context.set(None)


@contextmanager
def log_context(context: LogContext) -> Iterator[LogContext]:
    """Bind a logging context for the duration of a block.

    Example:
        >>> with log_context(LogContext(operation="load_friends")):
        ...     logger.info("Loading")
    """
    token = _log_context.set(context.to_dict())
    try:
        yield context
    finally:
        _log_context.reset(token)


class SensitiveDataMasker:
    """Masks sensitive data in log messages."""

    DEFAULT_PATTERNS: ClassVar[list[tuple[str, str]]] = [
        # API keys
        (r"(sk-[a-zA-Z0-9]{20,})", r"sk-***REDACTED***"),
        (r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)([^\"'\s]+)", r"\1***REDACTED***"),
        # Bearer tokens
        (r"(Bearer\s+)([^\s]+)", r"\1***REDACTED***"),
        # Authorization headers
        (r"(Authorization[\"']?\s*[:=]\s*[\"']?)([^\"'\s]+)", r"\1***REDACTED***"),
        # Credentials in query strings
        (r"([?&](?:token|access_token|session)=)([^&\s]+)", r"\1***REDACTED***"),
    ]

    def __init__(self, patterns: list[tuple[str, str]] | None = None) -> None:
        """Initialize masker with patterns.

        Args:
            patterns: List of (pattern, replacement) tuples
        """
        self._patterns = [
            (re.compile(p, re.IGNORECASE), r)
            for p, r in (patterns or self.DEFAULT_PATTERNS)
        ]

    def mask(self, text: str) -> str:
        """Mask sensitive data in text."""
        result = text
        for pattern, replacement in self._patterns:
            result = pattern.sub(replacement, result)
        return result

    def mask_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Mask sensitive data in dictionary.

        ``breaker_key`` is exempt from the key-name rule; it names an
        operation, not a credential.
        """
        result: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = key.lower()
            if key_lower != "breaker_key" and any(
                sensitive in key_lower
                for sensitive in ["key", "token", "secret", "password", "auth"]
            ):
                result[key] = "***REDACTED***"
            elif isinstance(value, str):
                result[key] = self.mask(value)
            elif isinstance(value, dict):
                result[key] = self.mask_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self.mask_dict(v) if isinstance(v, dict) else v for v in value
                ]
            else:
                result[key] = value
        return result


class JsonFormatter(logging.Formatter):
    """JSON log formatter."""

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_timestamp: bool = True,
    ) -> None:
        super().__init__()
        self._masker = masker or SensitiveDataMasker()
        self._include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": self._masker.mask(record.getMessage()),
        }

        if self._include_timestamp:
            log_data["timestamp"] = time.strftime(
                "%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)
            ) + f".{int(record.msecs):03d}Z"

        context = get_log_context()
        if context_dict := context.to_dict():
            log_data["context"] = self._masker.mask_dict(context_dict)

        if hasattr(record, "extra_fields"):
            log_data.update(self._masker.mask_dict(record.extra_fields))

        if record.exc_info:
            log_data["exception"] = self._masker.mask(self.formatException(record.exc_info))

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def __init__(
        self,
        masker: SensitiveDataMasker | None = None,
        include_context: bool = True,
    ) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self._masker = masker or SensitiveDataMasker()
        self._include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text."""
        original_msg = record.msg
        record.msg = self._masker.mask(str(record.msg))

        result = super().format(record)

        record.msg = original_msg

        fields: dict[str, Any] = {}
        if self._include_context:
            fields.update(get_log_context().to_dict())
        if hasattr(record, "extra_fields"):
            fields.update(record.extra_fields)
        if fields:
            masked = self._masker.mask_dict(fields)
            result = f"{result} | " + " ".join(f"{k}={v}" for k, v in masked.items())

        return result


class ResilienceLogger:
    """Logger with structured keyword fields.

    Example:
        >>> logger = ResilienceLogger.get_logger("resilient_ops.executor")
        >>> logger.warning("Retry scheduled", attempt=1, delay_ms=2000)
    """

    _loggers: ClassVar[dict[str, logging.Logger]] = {}
    _level: ClassVar[LogLevel] = LogLevel.INFO
    _formatter: ClassVar[logging.Formatter | None] = None
    _handler: ClassVar[logging.Handler | None] = None

    @classmethod
    def configure(
        cls,
        level: LogLevel = LogLevel.INFO,
        format: str = "json",
        stream: Any = None,
        masker: SensitiveDataMasker | None = None,
    ) -> None:
        """Configure global logging settings.

        Args:
            level: Log level
            format: Output format ('json' or 'text')
            stream: Output stream (default: stderr)
            masker: Sensitive data masker
        """
        cls._level = level

        if format == "json":
            cls._formatter = JsonFormatter(masker=masker)
        else:
            cls._formatter = TextFormatter(masker=masker)

        cls._handler = logging.StreamHandler(stream or sys.stderr)
        cls._handler.setFormatter(cls._formatter)
        cls._handler.setLevel(level.to_logging_level())

        for logger in cls._loggers.values():
            logger.handlers.clear()
            logger.addHandler(cls._handler)
            logger.setLevel(level.to_logging_level())

    @classmethod
    def get_logger(cls, name: str) -> ResilienceLogger:
        """Get or create a logger.

        Library loggers propagate to the root logger and only get a handler
        of their own once ``configure`` has been called.
        """
        if name not in cls._loggers:
            logger = logging.getLogger(name)
            if cls._handler:
                logger.setLevel(cls._level.to_logging_level())
                logger.handlers.clear()
                logger.addHandler(cls._handler)
                logger.propagate = False
            cls._loggers[name] = logger

        return cls(cls._loggers[name])

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self, level: int, msg: str, exc_info: bool = False, **kwargs: Any
    ) -> None:
        extra = {"extra_fields": kwargs} if kwargs else {}
        self._logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, exc_info=exc_info, **kwargs)

    def critical(self, msg: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)


def get_logger(name: str) -> ResilienceLogger:
    """Get a logger instance."""
    return ResilienceLogger.get_logger(name)
