"""
Recovery strategy catalog.

Presentation hints describing how a user (or UI) should respond to each error
category. The executor never reads these back; they exist for callers that
render error state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from resilient_ops.errors import ErrorCategory

if TYPE_CHECKING:
    from collections.abc import Mapping


class RecoveryType(str, Enum):
    """Kinds of suggested remediation."""

    RETRY_WITH_FALLBACK = "retry_with_fallback"
    WAIT_AND_RETRY = "wait_and_retry"
    RETRY_WITH_DEGRADED = "retry_with_degraded"
    REDIRECT_TO_AUTH = "redirect_to_auth"
    SHOW_VALIDATION_ERROR = "show_validation_error"
    REFRESH_AND_RETRY = "refresh_and_retry"
    REQUEST_ACCESS = "request_access"
    SHOW_CACHED = "show_cached"
    GENERIC_RECOVERY = "generic_recovery"


@dataclass(frozen=True)
class RecoveryStrategy:
    """Suggested remediation for an error category.

    Attributes:
        type: Kind of remediation
        description: Human-readable explanation
        suggested_actions: Action identifiers, in preference order
    """

    type: RecoveryType
    description: str
    suggested_actions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "description": self.description,
            "suggested_actions": list(self.suggested_actions),
        }


DEFAULT_STRATEGIES: dict[ErrorCategory, RecoveryStrategy] = {
    ErrorCategory.NETWORK: RecoveryStrategy(
        RecoveryType.RETRY_WITH_FALLBACK,
        "Retry with exponential backoff, then show cached data if available",
        ("retry", "show_cached", "offline_mode"),
    ),
    ErrorCategory.RATE_LIMIT: RecoveryStrategy(
        RecoveryType.WAIT_AND_RETRY,
        "Wait for the rate limit to reset, then retry",
        ("wait", "retry", "show_cached"),
    ),
    ErrorCategory.SERVER: RecoveryStrategy(
        RecoveryType.RETRY_WITH_DEGRADED,
        "Retry with exponential backoff, then show a degraded experience",
        ("retry", "show_cached", "degraded_mode"),
    ),
    ErrorCategory.AUTHENTICATION: RecoveryStrategy(
        RecoveryType.REDIRECT_TO_AUTH,
        "Redirect the user to the sign-in flow",
        ("redirect_auth", "clear_cache"),
    ),
    ErrorCategory.VALIDATION: RecoveryStrategy(
        RecoveryType.SHOW_VALIDATION_ERROR,
        "Show the validation error so the user can correct the input",
        ("show_error", "highlight_fields"),
    ),
    ErrorCategory.NOT_FOUND: RecoveryStrategy(
        RecoveryType.REFRESH_AND_RETRY,
        "Refresh data and retry once",
        ("refresh", "retry"),
    ),
    ErrorCategory.TIMEOUT: RecoveryStrategy(
        RecoveryType.RETRY_WITH_FALLBACK,
        "Retry with backoff, then show cached data if available",
        ("retry", "show_cached"),
    ),
    ErrorCategory.PERMISSION_DENIED: RecoveryStrategy(
        RecoveryType.REQUEST_ACCESS,
        "Explain the missing permission and offer to request access",
        ("show_error", "request_access"),
    ),
    ErrorCategory.CIRCUIT_BREAKER_OPEN: RecoveryStrategy(
        RecoveryType.SHOW_CACHED,
        "Stop calling the failing service and show cached data until it recovers",
        ("show_cached", "wait", "degraded_mode"),
    ),
    ErrorCategory.UNKNOWN: RecoveryStrategy(
        RecoveryType.GENERIC_RECOVERY,
        "Generic error recovery with user options",
        ("retry", "refresh", "contact_support"),
    ),
}


class RecoveryStrategyCatalog:
    """Lookup table from error category to recovery strategy.

    Example:
        >>> catalog = RecoveryStrategyCatalog()
        >>> catalog.get(ErrorCategory.AUTHENTICATION).type
        <RecoveryType.REDIRECT_TO_AUTH: 'redirect_to_auth'>
    """

    def __init__(
        self,
        overrides: Mapping[ErrorCategory, RecoveryStrategy] | None = None,
    ) -> None:
        """Initialize catalog.

        Args:
            overrides: Strategies replacing the defaults for some categories
        """
        self._strategies = dict(DEFAULT_STRATEGIES)
        if overrides:
            self._strategies.update(overrides)

    def get(self, category: ErrorCategory) -> RecoveryStrategy:
        return self._strategies.get(category, self._strategies[ErrorCategory.UNKNOWN])

    def __contains__(self, category: object) -> bool:
        return category in self._strategies

    def items(self) -> list[tuple[ErrorCategory, RecoveryStrategy]]:
        return list(self._strategies.items())


_default_catalog = RecoveryStrategyCatalog()


def get_recovery_strategy(category: ErrorCategory) -> RecoveryStrategy:
    """Get the default recovery strategy for a category."""
    return _default_catalog.get(category)
