"""
Error hierarchy and classification for resilient-ops.

Raw operation failures are normalized once (``describe_failure``) and mapped
onto a closed set of categories (``classify``).
"""

from resilient_ops.errors.base import (
    ClassifiedError,
    ConfigError,
    ErrorContext,
    ResilienceError,
)
from resilient_ops.errors.classification import (
    ERROR_PATTERNS,
    ErrorCategory,
    ErrorClassification,
    ErrorClassifier,
    ErrorSeverity,
    category_for_message,
    category_for_status,
    classify,
    is_retryable,
    severity_for,
)
from resilient_ops.errors.failure import (
    FailureInfo,
    FailureKind,
    describe_failure,
    parse_retry_after,
)

__all__ = [
    # Base errors
    "ClassifiedError",
    "ConfigError",
    "ErrorContext",
    "ResilienceError",
    # Classification
    "ERROR_PATTERNS",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorSeverity",
    "category_for_message",
    "category_for_status",
    "classify",
    "is_retryable",
    "severity_for",
    # Failure normalization
    "FailureInfo",
    "FailureKind",
    "describe_failure",
    "parse_retry_after",
]
