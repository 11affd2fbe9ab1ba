"""
Retry configuration and exponential backoff with jitter.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from resilient_ops.errors import ErrorCategory

if TYPE_CHECKING:
    from collections.abc import Callable

    from resilient_ops.errors import ErrorClassification

JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retrying one category of failure.

    Attributes:
        max_retries: Maximum number of retries after the first attempt
        base_delay_ms: Delay before the first retry in milliseconds
        max_delay_ms: Upper bound for the exponential delay in milliseconds
        backoff_multiplier: Growth factor per attempt
        jitter: Apply a uniform +/-25% randomization
        retry_condition: Optional ``(attempt, classification) -> bool``;
            when it returns False the executor stops immediately
    """

    max_retries: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_condition: Callable[[int, ErrorClassification], bool] | None = None

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Create a config that disables retries."""
        return cls(max_retries=0, base_delay_ms=0, max_delay_ms=0, jitter=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RetryConfig:
        """Create config from a plain mapping.

        Args:
            data: Mapping with any of the dataclass field names

        Returns:
            RetryConfig instance
        """
        if not data:
            return cls()
        return cls(
            max_retries=int(data.get("max_retries", 3)),
            base_delay_ms=float(data.get("base_delay_ms", 1000)),
            max_delay_ms=float(data.get("max_delay_ms", 10000)),
            backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            jitter=bool(data.get("jitter", True)),
        )

    def with_overrides(self, **changes: Any) -> RetryConfig:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def should_retry(self, attempt: int, classification: ErrorClassification) -> bool:
        """Check whether another attempt may be scheduled.

        Args:
            attempt: Zero-based index of the attempt that just failed
            classification: Classification of that failure

        Returns:
            True if a retry should be scheduled
        """
        if attempt >= self.max_retries:
            return False
        if self.retry_condition is not None:
            return bool(self.retry_condition(attempt, classification))
        return True


DEFAULT_RETRY_CONFIGS: dict[ErrorCategory, RetryConfig] = {
    ErrorCategory.NETWORK: RetryConfig(
        max_retries=3, base_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=True
    ),
    ErrorCategory.RATE_LIMIT: RetryConfig(
        max_retries=2, base_delay_ms=5000, max_delay_ms=30000, backoff_multiplier=3, jitter=True
    ),
    ErrorCategory.SERVER: RetryConfig(
        max_retries=2, base_delay_ms=2000, max_delay_ms=8000, backoff_multiplier=2, jitter=True
    ),
    ErrorCategory.TIMEOUT: RetryConfig(
        max_retries=3, base_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=True
    ),
    ErrorCategory.NOT_FOUND: RetryConfig(
        max_retries=1, base_delay_ms=1000, max_delay_ms=1000, backoff_multiplier=1, jitter=False
    ),
    ErrorCategory.UNKNOWN: RetryConfig(
        max_retries=1, base_delay_ms=2000, max_delay_ms=2000, backoff_multiplier=1, jitter=False
    ),
    ErrorCategory.AUTHENTICATION: RetryConfig.no_retry(),
    ErrorCategory.VALIDATION: RetryConfig.no_retry(),
    ErrorCategory.PERMISSION_DENIED: RetryConfig.no_retry(),
    ErrorCategory.CIRCUIT_BREAKER_OPEN: RetryConfig.no_retry(),
}


def default_retry_config(category: ErrorCategory) -> RetryConfig:
    """Get the default retry configuration for a category."""
    return DEFAULT_RETRY_CONFIGS.get(category, DEFAULT_RETRY_CONFIGS[ErrorCategory.UNKNOWN])


class BackoffPolicy:
    """Computes retry delays.

    ``delay = min(base * multiplier ** attempt, max)``; with jitter the delay
    is randomized uniformly within +/-25% and floored at the base delay.

    Example:
        >>> policy = BackoffPolicy(rng=random.Random(7))
        >>> config = RetryConfig(base_delay_ms=1000, max_delay_ms=10000, jitter=False)
        >>> [policy.compute_delay(n, config) for n in range(5)]
        [1000.0, 2000.0, 4000.0, 8000.0, 10000.0]
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        """Initialize backoff policy.

        Args:
            rng: Random source for jitter; inject a seeded one for determinism
        """
        self._rng = rng or random.Random()

    def expected_delay(self, attempt: int, config: RetryConfig) -> float:
        """Delay in milliseconds before jitter is applied."""
        attempt = max(0, attempt)
        try:
            delay = config.base_delay_ms * (config.backoff_multiplier ** attempt)
        except OverflowError:
            delay = config.max_delay_ms
        return float(min(delay, config.max_delay_ms))

    def compute_delay(self, attempt: int, config: RetryConfig) -> float:
        """Calculate delay for a retry attempt.

        Args:
            attempt: Zero-based attempt number
            config: Retry configuration

        Returns:
            Delay in milliseconds
        """
        delay = self.expected_delay(attempt, config)

        if config.jitter and delay > 0:
            delay += delay * JITTER_RATIO * self._rng.uniform(-1.0, 1.0)
            floor = min(config.base_delay_ms, config.max_delay_ms)
            delay = max(delay, float(floor))

        return max(delay, 0.0)
