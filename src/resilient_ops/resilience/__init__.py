"""
Resilience layer - Backoff, circuit breaking, cancellation and recovery hints.

This module provides the retry machinery around async operations:
- RetryConfig / BackoffPolicy: Exponential backoff with jitter
- CircuitBreakerRegistry: Per-key Closed/Open/Half-Open state machine
- RecoveryStrategyCatalog: Remediation hints per error category
- CancelToken: Cooperative cancellation of retry loops
- ResilientExecutor: Unified executor combining all patterns
"""

from resilient_ops.resilience.backoff import (
    DEFAULT_RETRY_CONFIGS,
    JITTER_RATIO,
    BackoffPolicy,
    RetryConfig,
    default_retry_config,
)
from resilient_ops.resilience.cancel import (
    CancelHandle,
    CancelReason,
    CancelState,
    CancelToken,
    create_cancel_pair,
)
from resilient_ops.resilience.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
)
from resilient_ops.resilience.context import OperationContext
from resilient_ops.resilience.executor import (
    ExecutionResult,
    ResilientExecutor,
    RetryStatus,
)
from resilient_ops.resilience.policy import ResiliencePolicy
from resilient_ops.resilience.recovery import (
    DEFAULT_STRATEGIES,
    RecoveryStrategy,
    RecoveryStrategyCatalog,
    RecoveryType,
    get_recovery_strategy,
)

__all__ = [
    # Backoff
    "DEFAULT_RETRY_CONFIGS",
    "JITTER_RATIO",
    "BackoffPolicy",
    "RetryConfig",
    "default_retry_config",
    # Cancellation
    "CancelHandle",
    "CancelReason",
    "CancelState",
    "CancelToken",
    "create_cancel_pair",
    # Circuit breaker
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    # Executor
    "ExecutionResult",
    "OperationContext",
    "ResiliencePolicy",
    "ResilientExecutor",
    "RetryStatus",
    # Recovery
    "DEFAULT_STRATEGIES",
    "RecoveryStrategy",
    "RecoveryStrategyCatalog",
    "RecoveryType",
    "get_recovery_strategy",
]
