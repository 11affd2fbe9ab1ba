"""
Telemetry for resilient-ops: structured, masked logging.
"""

from resilient_ops.telemetry.logger import (
    JsonFormatter,
    LogContext,
    LogLevel,
    ResilienceLogger,
    SensitiveDataMasker,
    TextFormatter,
    clear_log_context,
    get_log_context,
    get_logger,
    log_context,
    set_log_context,
)

__all__ = [
    "JsonFormatter",
    "LogContext",
    "LogLevel",
    "ResilienceLogger",
    "SensitiveDataMasker",
    "TextFormatter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
    "set_log_context",
]
