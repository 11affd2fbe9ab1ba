"""
Error classification.

Maps raw operation failures onto a closed set of categories with a fixed
severity, a user-safe message and a retryability flag. The pattern tables
here are the single source shared by every call site.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_ops.errors.failure import FailureInfo, FailureKind, describe_failure

if TYPE_CHECKING:
    from collections.abc import Callable

    from resilient_ops.resilience.context import OperationContext


class ErrorCategory(str, Enum):
    """Closed set of failure categories."""

    NETWORK = "NETWORK_ERROR"
    """Connectivity problems: offline, DNS, refused or reset connections."""

    RATE_LIMIT = "RATE_LIMIT_ERROR"
    """Throttled by the remote side; retry with a longer delay."""

    AUTHENTICATION = "AUTHENTICATION_ERROR"
    """Missing, expired or rejected credentials. Never retried."""

    VALIDATION = "VALIDATION_ERROR"
    """The request itself is wrong. Never retried."""

    SERVER = "SERVER_ERROR"
    """Transient server-side failure (5xx, database errors)."""

    NOT_FOUND = "NOT_FOUND_ERROR"
    """The requested entity does not exist."""

    TIMEOUT = "TIMEOUT_ERROR"
    """The operation did not complete in time."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    """Authenticated but not allowed to perform the operation."""

    CIRCUIT_BREAKER_OPEN = "CIRCUIT_BREAKER_OPEN"
    """Synthesized locally when the breaker rejects a call."""

    UNKNOWN = "UNKNOWN_ERROR"
    """Nothing else matched."""


class ErrorSeverity(str, Enum):
    """Severity of a classified failure."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_BY_CATEGORY: dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.AUTHENTICATION: ErrorSeverity.CRITICAL,
    ErrorCategory.SERVER: ErrorSeverity.CRITICAL,
    ErrorCategory.NETWORK: ErrorSeverity.HIGH,
    ErrorCategory.RATE_LIMIT: ErrorSeverity.HIGH,
    ErrorCategory.TIMEOUT: ErrorSeverity.HIGH,
    ErrorCategory.CIRCUIT_BREAKER_OPEN: ErrorSeverity.HIGH,
    ErrorCategory.NOT_FOUND: ErrorSeverity.MEDIUM,
    ErrorCategory.PERMISSION_DENIED: ErrorSeverity.MEDIUM,
    ErrorCategory.UNKNOWN: ErrorSeverity.MEDIUM,
    ErrorCategory.VALIDATION: ErrorSeverity.LOW,
}

NON_RETRYABLE_CATEGORIES: frozenset[ErrorCategory] = frozenset(
    {ErrorCategory.AUTHENTICATION, ErrorCategory.VALIDATION}
)

USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "Connection issue. Please check your internet and try again.",
    ErrorCategory.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ErrorCategory.AUTHENTICATION: "Authentication required. Please sign in again.",
    ErrorCategory.VALIDATION: "Invalid request. Please check your input and try again.",
    ErrorCategory.SERVER: "Server temporarily unavailable. Please try again in a few moments.",
    ErrorCategory.NOT_FOUND: "The requested information could not be found.",
    ErrorCategory.TIMEOUT: "The request took too long. Please try again.",
    ErrorCategory.PERMISSION_DENIED: "You don't have permission to do that.",
    ErrorCategory.CIRCUIT_BREAKER_OPEN: "Service temporarily unavailable. Please try again shortly.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred. Please try again.",
}

ERROR_TITLES: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: "Connection Error",
    ErrorCategory.RATE_LIMIT: "Rate Limit Exceeded",
    ErrorCategory.AUTHENTICATION: "Authentication Required",
    ErrorCategory.VALIDATION: "Validation Error",
    ErrorCategory.SERVER: "Server Error",
    ErrorCategory.NOT_FOUND: "Not Found",
    ErrorCategory.TIMEOUT: "Request Timed Out",
    ErrorCategory.PERMISSION_DENIED: "Permission Denied",
    ErrorCategory.CIRCUIT_BREAKER_OPEN: "Service Temporarily Unavailable",
    ErrorCategory.UNKNOWN: "Unexpected Error",
}

# Ordered: first matching group wins.
_PATTERN_SOURCES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.NETWORK,
        (
            r"network",
            r"fetch",
            r"connection",
            r"timeout",
            r"offline",
            r"ERR_NETWORK",
            r"ERR_INTERNET_DISCONNECTED",
        ),
    ),
    (
        ErrorCategory.RATE_LIMIT,
        (
            r"rate.?limit",
            r"too.?many.?requests",
            r"\b429\b",
            r"quota.?exceeded",
            r"throttl",
        ),
    ),
    (
        ErrorCategory.TIMEOUT,
        (
            r"timed.?out",
            r"deadline.?exceeded",
        ),
    ),
    (
        ErrorCategory.PERMISSION_DENIED,
        (
            r"permission.?denied",
            r"not.?permitted",
            r"insufficient.?permissions?",
        ),
    ),
    (
        ErrorCategory.AUTHENTICATION,
        (
            r"unauthori[sz]ed",
            r"authentication",
            r"\b401\b",
            r"\b403\b",
            r"forbidden",
            r"access.?denied",
        ),
    ),
    (
        ErrorCategory.VALIDATION,
        (
            r"validation",
            r"invalid",
            r"bad.?request",
            r"\b400\b",
            r"malformed",
        ),
    ),
    (
        ErrorCategory.SERVER,
        (
            r"server.?error",
            r"internal.?error",
            r"\b50[0234]\b",
            r"database",
        ),
    ),
    (
        ErrorCategory.NOT_FOUND,
        (
            r"not.?found",
            r"\b404\b",
            r"does.?not.?exist",
            r"missing",
        ),
    ),
)

ERROR_PATTERNS: tuple[tuple[ErrorCategory, tuple[re.Pattern[str], ...]], ...] = tuple(
    (category, tuple(re.compile(source, re.IGNORECASE) for source in sources))
    for category, sources in _PATTERN_SOURCES
)

_STATUS_MAPPING: dict[int, ErrorCategory] = {
    400: ErrorCategory.VALIDATION,
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.AUTHENTICATION,
    404: ErrorCategory.NOT_FOUND,
    408: ErrorCategory.TIMEOUT,
    422: ErrorCategory.VALIDATION,
    429: ErrorCategory.RATE_LIMIT,
}


@dataclass(frozen=True)
class ErrorClassification:
    """Typed classification of a single failure.

    Attributes:
        category: Failure category
        severity: Severity derived from the category
        message: User-facing message (never the raw error text)
        retryable: Whether the executor may retry this failure
        original_error: The raw failure as received
        context: Operation context the failure happened in
        title: Short user-facing heading
        status_code: Status code extracted from the failure, if any
        retry_after_ms: Server retry hint in milliseconds, if any
        timestamp: Wall-clock time of classification
    """

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    retryable: bool
    original_error: Any = None
    context: OperationContext | None = None
    title: str = ""
    status_code: int | None = None
    retry_after_ms: float | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary (without the raw error)."""
        data: dict[str, Any] = {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "title": self.title,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        if self.context is not None:
            data["context"] = self.context.to_dict()
        return data


def category_for_status(status_code: int) -> ErrorCategory | None:
    """Map a status code to a category.

    Args:
        status_code: HTTP-like status code

    Returns:
        ErrorCategory, or None for non-error statuses
    """
    if status_code in _STATUS_MAPPING:
        return _STATUS_MAPPING[status_code]
    if 500 <= status_code < 600:
        return ErrorCategory.SERVER
    if 400 <= status_code < 500:
        return ErrorCategory.VALIDATION
    return None


def category_for_message(message: str) -> ErrorCategory | None:
    """Match a raw message against the shared pattern table."""
    if not message:
        return None
    for category, patterns in ERROR_PATTERNS:
        if any(pattern.search(message) for pattern in patterns):
            return category
    return None


def severity_for(category: ErrorCategory) -> ErrorSeverity:
    return SEVERITY_BY_CATEGORY.get(category, ErrorSeverity.MEDIUM)


class ErrorClassifier:
    """Classifies raw failures.

    Evaluation order: status code, message patterns, failure kind, UNKNOWN.
    The classifier is pure: it keeps no state between calls and never raises.

    Example:
        >>> classifier = ErrorClassifier()
        >>> result = classifier.classify(ConnectionError("network unreachable"))
        >>> result.category
        <ErrorCategory.NETWORK: 'NETWORK_ERROR'>
    """

    def __init__(
        self,
        retryable_predicate: Callable[[ErrorCategory, FailureInfo], bool] | None = None,
    ) -> None:
        """Initialize classifier.

        Args:
            retryable_predicate: Optional veto on retryability for categories
                that are retryable by default
        """
        self._retryable_predicate = retryable_predicate

    def categorize(self, failure: FailureInfo) -> ErrorCategory:
        """Determine the category of a normalized failure."""
        if failure.status_code is not None:
            by_status = category_for_status(failure.status_code)
            if by_status is not None:
                return by_status

        by_message = category_for_message(failure.message)
        if by_message is not None:
            return by_message

        if failure.kind == FailureKind.TIMEOUT:
            return ErrorCategory.TIMEOUT
        if failure.kind == FailureKind.CONNECTION:
            return ErrorCategory.NETWORK

        return ErrorCategory.UNKNOWN

    def is_retryable(self, category: ErrorCategory, failure: FailureInfo) -> bool:
        if category in NON_RETRYABLE_CATEGORIES:
            return False
        if self._retryable_predicate is None:
            return True
        try:
            return bool(self._retryable_predicate(category, failure))
        except Exception:
            return True

    def classify(
        self,
        error: Any,
        context: OperationContext | None = None,
    ) -> ErrorClassification:
        """Classify a raw failure.

        Args:
            error: The raw failure (exception, mapping, string, ...)
            context: Optional operation context to attach

        Returns:
            ErrorClassification for the failure
        """
        from resilient_ops.errors.base import ClassifiedError

        if isinstance(error, ClassifiedError):
            return error.classification

        failure = describe_failure(error)
        category = self.categorize(failure)

        return ErrorClassification(
            category=category,
            severity=severity_for(category),
            message=USER_MESSAGES[category],
            retryable=self.is_retryable(category, failure),
            original_error=error,
            context=context,
            title=ERROR_TITLES[category],
            status_code=failure.status_code,
            retry_after_ms=failure.retry_after_ms,
        )

    def circuit_open(
        self,
        retry_in_seconds: float | None,
        context: OperationContext | None = None,
    ) -> ErrorClassification:
        """Synthesize the classification for a breaker rejection.

        Args:
            retry_in_seconds: Remaining cooldown in seconds
            context: Operation context of the rejected call

        Returns:
            CIRCUIT_BREAKER_OPEN classification
        """
        seconds = max(1, math.ceil(retry_in_seconds or 0))
        category = ErrorCategory.CIRCUIT_BREAKER_OPEN
        return ErrorClassification(
            category=category,
            severity=severity_for(category),
            message=f"Service temporarily unavailable. Please retry in {seconds}s.",
            retryable=True,
            context=context,
            title=ERROR_TITLES[category],
            retry_after_ms=(retry_in_seconds or 0) * 1000.0,
        )


_default_classifier = ErrorClassifier()


def classify(
    error: Any,
    context: OperationContext | None = None,
) -> ErrorClassification:
    """Classify a raw failure with the shared default classifier."""
    return _default_classifier.classify(error, context)


def is_retryable(category: ErrorCategory) -> bool:
    """Check if a category is retryable by default."""
    return category not in NON_RETRYABLE_CATEGORIES
