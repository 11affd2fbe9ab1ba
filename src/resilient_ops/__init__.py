"""resilient-ops: resilient execution of fallible async operations.

Wraps network-bound operations with error classification, exponential backoff
with jitter, per-key circuit breakers and cooperative cancellation.
"""
from __future__ import annotations

from resilient_ops.errors import (
    ClassifiedError,
    ConfigError,
    ErrorCategory,
    ErrorClassification,
    ErrorClassifier,
    ErrorSeverity,
    ResilienceError,
    classify,
)
from resilient_ops.resilience import (
    BackoffPolicy,
    CancelReason,
    CancelToken,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    ExecutionResult,
    OperationContext,
    RecoveryStrategy,
    ResiliencePolicy,
    ResilientExecutor,
    RetryConfig,
    RetryStatus,
    get_recovery_strategy,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ClassifiedError",
    "ConfigError",
    "ErrorCategory",
    "ErrorClassification",
    "ErrorClassifier",
    "ErrorSeverity",
    "ResilienceError",
    "classify",
    # Resilience
    "BackoffPolicy",
    "CancelReason",
    "CancelToken",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ExecutionResult",
    "OperationContext",
    "RecoveryStrategy",
    "ResiliencePolicy",
    "ResilientExecutor",
    "RetryConfig",
    "RetryStatus",
    "get_recovery_strategy",
    # Version
    "__version__",
]
