"""
Resilience policy: the single source of thresholds, cooldowns and per-category
retry settings used by an executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from resilient_ops.errors import ErrorCategory
from resilient_ops.resilience.backoff import RetryConfig, default_retry_config
from resilient_ops.resilience.circuit_breaker import CircuitBreakerConfig


@dataclass(frozen=True)
class ResiliencePolicy:
    """Runtime resilience policy.

    Use ``resilient_ops.config`` to build one from a file or the environment.

    Attributes:
        breaker: Breaker configuration for the executor's registry
        retry_overrides: Per-category retry configs replacing the defaults
    """

    breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry_overrides: dict[ErrorCategory, RetryConfig] = field(default_factory=dict)

    @classmethod
    def default(cls) -> ResiliencePolicy:
        """Create the built-in policy."""
        return cls()

    def retry_config(self, category: ErrorCategory) -> RetryConfig:
        """Get the retry configuration for a category."""
        if category in self.retry_overrides:
            return self.retry_overrides[category]
        return default_retry_config(category)

    def with_retry(self, category: ErrorCategory, config: RetryConfig) -> ResiliencePolicy:
        """Return a copy with one category's retry config replaced."""
        return ResiliencePolicy(
            breaker=self.breaker,
            retry_overrides={**self.retry_overrides, category: config},
        )
