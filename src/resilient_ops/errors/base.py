"""
Base error classes for resilient-ops.

Provides a small layered error hierarchy:
- ResilienceError: Base class for all library errors
- ClassifiedError: Terminal operation failure carrying its classification
- ConfigError: Invalid resilience policy input
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from resilient_ops.errors.classification import (
        ErrorCategory,
        ErrorClassification,
        ErrorSeverity,
    )


@dataclass
class ErrorContext:
    """Structured error context for diagnostics.

    Provides actionable information for debugging and error handling.
    """

    details: dict[str, Any] = field(default_factory=dict)
    """Additional details about the error"""

    source: str | None = None
    """Error source (e.g., 'executor', 'config')"""

    hint: str | None = None
    """Actionable hint for resolving the error"""

    def __str__(self) -> str:
        parts = []
        if self.source:
            parts.append(f"[{self.source}]")
        if self.hint:
            parts.append(f"(hint: {self.hint})")
        return " ".join(parts)


class ResilienceError(Exception):
    """Base class for all resilient-ops errors.

    Attributes:
        message: Human-readable error message
        context: Optional structured error context
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
    ) -> None:
        self.message = message
        self.context = context or ErrorContext()
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the full error message."""
        ctx_str = str(self.context)
        if ctx_str:
            return f"{self.message} {ctx_str}"
        return self.message

    def with_hint(self, hint: str) -> ResilienceError:
        """Add a hint to this error."""
        self.context.hint = hint
        self.args = (self._format_message(),)
        return self


class ClassifiedError(ResilienceError):
    """Terminal failure of a protected operation.

    Raised by the executor once an operation can no longer be retried.
    The message is the pre-rendered, user-safe text from the classification;
    the raw failure (if any) is chained as ``__cause__``.

    Attributes:
        classification: The classification of the final failure
        attempts: Number of operation attempts made before giving up
    """

    def __init__(
        self,
        classification: ErrorClassification,
        *,
        attempts: int = 0,
    ) -> None:
        ctx = ErrorContext(source="executor")
        ctx.details["category"] = classification.category.value
        ctx.details["severity"] = classification.severity.value
        ctx.details["retryable"] = classification.retryable
        ctx.details["attempts"] = attempts
        if classification.status_code is not None:
            ctx.details["status_code"] = classification.status_code

        super().__init__(classification.message, ctx)

        self.classification = classification
        self.attempts = attempts
        original = classification.original_error
        if isinstance(original, BaseException):
            self.__cause__ = original

    @property
    def category(self) -> ErrorCategory:
        return self.classification.category

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def user_message(self) -> str:
        return self.classification.message

    @property
    def retryable(self) -> bool:
        return self.classification.retryable

    def __repr__(self) -> str:
        return (
            f"ClassifiedError(category={self.category.value}, "
            f"severity={self.severity.value}, attempts={self.attempts})"
        )


class ConfigError(ResilienceError):
    """Invalid resilience policy configuration.

    Raised when:
    - A policy file cannot be read or parsed
    - Policy values fail validation
    - An environment override is not a number
    """

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        *,
        path: str | None = None,
    ) -> None:
        ctx = context or ErrorContext(source="config")
        if path:
            ctx.details["path"] = path
        super().__init__(message, ctx)
        self.path = path
