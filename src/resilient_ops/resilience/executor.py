"""
Resilient executor: classification, backoff and circuit breaking around an
opaque async operation.

For each call to ``run``:
1. The breaker for the operation key is consulted; an open breaker fails fast
2. The operation is attempted
3. On success the breaker is reset and the result returned
4. On failure the error is classified and recorded; the executor either
   surfaces a ClassifiedError or waits out a backoff delay and tries again

The backoff wait is the only suspension point the executor adds.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from resilient_ops.errors import ClassifiedError, ErrorClassifier, describe_failure
from resilient_ops.resilience.backoff import BackoffPolicy, RetryConfig
from resilient_ops.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from resilient_ops.resilience.context import OperationContext
from resilient_ops.resilience.policy import ResiliencePolicy
from resilient_ops.telemetry.logger import LogContext, get_logger, log_context

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from resilient_ops.errors import ErrorClassification
    from resilient_ops.resilience.cancel import CancelToken

T = TypeVar("T")

logger = get_logger("resilient_ops.executor")


@dataclass(frozen=True)
class RetryStatus:
    """Read-only view of a retry loop, for polling UIs.

    Attributes:
        attempt: Number of retries scheduled so far
        max_retries: Retry budget for the current failure category
        ms_until_next_retry: Milliseconds until the pending retry fires
        is_retrying: Whether a retry is currently pending
    """

    attempt: int
    max_retries: int
    ms_until_next_retry: float
    is_retrying: bool


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of ``run_with_result``.

    Attributes:
        success: Whether the operation eventually succeeded
        value: The operation result (if success)
        error: The terminal ClassifiedError (if failed)
        attempts: Number of operation attempts made
        total_delay_ms: Total backoff delay awaited
    """

    success: bool
    value: T | None = None
    error: ClassifiedError | None = None
    attempts: int = 0
    total_delay_ms: float = 0.0


@dataclass
class _RunState:
    attempts: int = 0
    total_delay_ms: float = 0.0


@dataclass
class _RetryTracker:
    attempt: int
    max_retries: int
    next_retry_at: float


@dataclass
class _Counters:
    runs: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    rejected: int = 0
    cancelled: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(vars(self))


class ResilientExecutor:
    """Runs async operations with classification, backoff and circuit breaking.

    Example:
        >>> executor = ResilientExecutor()
        >>> ctx = OperationContext("load_more", namespace="friends_list", entity_id=user_id)
        >>> try:
        ...     page = await executor.run(lambda: fetch_page(cursor), ctx)
        ... except ClassifiedError as e:
        ...     show_error(e.user_message)
    """

    def __init__(
        self,
        registry: CircuitBreakerRegistry | None = None,
        classifier: ErrorClassifier | None = None,
        backoff: BackoffPolicy | None = None,
        policy: ResiliencePolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
        name: str = "default",
    ) -> None:
        """Initialize executor.

        Args:
            registry: Shared breaker registry (a private one is created from
                the policy if omitted)
            classifier: Error classifier
            backoff: Backoff policy (inject a seeded RNG for determinism)
            policy: Per-category retry settings and breaker configuration
            sleep: Coroutine used to wait out backoff delays, in seconds
            clock: Monotonic clock in seconds, used for retry status
            name: Identifier for logs and stats
        """
        self._policy = policy or ResiliencePolicy.default()
        self._registry = registry or CircuitBreakerRegistry(self._policy.breaker)
        self._classifier = classifier or ErrorClassifier()
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._name = name

        self._retrying: dict[str, _RetryTracker] = {}
        self._background: set[asyncio.Future[Any]] = set()
        self._counters = _Counters()

    @property
    def name(self) -> str:
        return self._name

    @property
    def registry(self) -> CircuitBreakerRegistry:
        return self._registry

    @property
    def policy(self) -> ResiliencePolicy:
        return self._policy

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        context: OperationContext | str,
        config: RetryConfig | None = None,
        *,
        cancel_token: CancelToken | None = None,
        on_retry_scheduled: Callable[[int, float], Any] | None = None,
    ) -> T:
        """Execute an operation with retries and circuit breaking.

        Args:
            operation: Zero-argument coroutine function performing the work
            context: Operation context (or just an operation name)
            config: Retry config applied to every category; the policy's
                per-category configs are used when omitted
            cancel_token: Token that aborts the loop when cancelled
            on_retry_scheduled: Called with ``(retry_number, delay_ms)``
                before each backoff wait; must not block

        Returns:
            The operation result

        Raises:
            ClassifiedError: If the operation cannot succeed (non-retryable
                failure, retries exhausted, or breaker open)
            asyncio.CancelledError: If the loop was cancelled
        """
        return await self._execute(
            operation,
            _as_context(context),
            config,
            cancel_token,
            on_retry_scheduled,
            _RunState(),
        )

    async def run_with_result(
        self,
        operation: Callable[[], Awaitable[T]],
        context: OperationContext | str,
        config: RetryConfig | None = None,
        *,
        cancel_token: CancelToken | None = None,
        on_retry_scheduled: Callable[[int, float], Any] | None = None,
    ) -> ExecutionResult[T]:
        """Execute like ``run`` but return failures as values.

        Returns:
            ExecutionResult with either the value or the ClassifiedError
        """
        state = _RunState()
        try:
            value = await self._execute(
                operation,
                _as_context(context),
                config,
                cancel_token,
                on_retry_scheduled,
                state,
            )
        except ClassifiedError as e:
            return ExecutionResult(
                success=False,
                error=e,
                attempts=state.attempts,
                total_delay_ms=state.total_delay_ms,
            )
        return ExecutionResult(
            success=True,
            value=value,
            attempts=state.attempts,
            total_delay_ms=state.total_delay_ms,
        )

    async def _execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: OperationContext,
        config: RetryConfig | None,
        cancel_token: CancelToken | None,
        on_retry_scheduled: Callable[[int, float], Any] | None,
        state: _RunState,
    ) -> T:
        key = context.breaker_key
        tracker: _RetryTracker | None = None
        self._counters.runs += 1

        bound = LogContext(
            operation=context.operation,
            entity_id=context.entity_id,
            breaker_key=key,
        )
        with log_context(bound):
            try:
                while True:
                    self._check_cancelled(cancel_token)

                    if not self._registry.is_allowed(key):
                        self._counters.rejected += 1
                        classification = self._classifier.circuit_open(
                            self._registry.time_until_retry(key), context
                        )
                        logger.warning("Circuit open, failing fast", attempts=state.attempts)
                        raise ClassifiedError(classification, attempts=state.attempts)

                    breaker = self._registry.get_state(key)
                    holds_probe = breaker is not None and breaker.state == CircuitState.HALF_OPEN

                    state.attempts += 1
                    logger.debug("Attempt started", attempt=state.attempts)

                    try:
                        result = await operation()
                    except asyncio.CancelledError:
                        self._abandon_attempt(key, holds_probe)
                        raise
                    except Exception as exc:
                        if cancel_token is not None and cancel_token.is_cancelled:
                            self._abandon_attempt(key, holds_probe)
                            cancel_token.raise_if_cancelled()

                        classification = self._classifier.classify(exc, context)
                        self._registry.record_failure(key)

                        retry_config = config or self._policy.retry_config(
                            classification.category
                        )
                        retry_index = state.attempts - 1
                        if not self._can_retry(key, retry_index, retry_config, classification):
                            self._counters.failures += 1
                            logger.error(
                                "Operation failed",
                                category=classification.category.value,
                                severity=classification.severity.value,
                                attempts=state.attempts,
                                error=describe_failure(exc).message,
                            )
                            raise ClassifiedError(
                                classification, attempts=state.attempts
                            ) from exc

                        delay_ms = self._retry_delay(retry_index, retry_config, classification)

                        tracker = _RetryTracker(
                            attempt=state.attempts,
                            max_retries=retry_config.max_retries,
                            next_retry_at=self._clock() + delay_ms / 1000.0,
                        )
                        self._retrying[key] = tracker
                        self._counters.retries += 1

                        logger.warning(
                            "Retry scheduled",
                            category=classification.category.value,
                            retry=state.attempts,
                            max_retries=retry_config.max_retries,
                            delay_ms=round(delay_ms, 1),
                            error=describe_failure(exc).message,
                        )
                        self._notify(on_retry_scheduled, state.attempts, delay_ms)

                        await self._wait(delay_ms / 1000.0, cancel_token)
                        state.total_delay_ms += delay_ms
                        continue

                    if cancel_token is not None and cancel_token.is_cancelled:
                        self._abandon_attempt(key, holds_probe)
                        cancel_token.raise_if_cancelled()

                    self._registry.record_success(key)
                    self._counters.successes += 1
                    if state.attempts > 1:
                        logger.info("Operation recovered", attempts=state.attempts)
                    return result
            except asyncio.CancelledError:
                self._counters.cancelled += 1
                logger.info("Retry loop cancelled", attempts=state.attempts)
                raise
            finally:
                if tracker is not None and self._retrying.get(key) is tracker:
                    del self._retrying[key]

    def _can_retry(
        self,
        key: str,
        attempt: int,
        config: RetryConfig,
        classification: ErrorClassification,
    ) -> bool:
        if not classification.retryable:
            return False
        if not config.should_retry(attempt, classification):
            return False
        return not self._registry.is_open(key)

    def _retry_delay(
        self,
        attempt: int,
        config: RetryConfig,
        classification: ErrorClassification,
    ) -> float:
        """Backoff delay in milliseconds, stretched by a server retry hint.

        The hint is capped at the config's ``max_delay_ms``.
        """
        delay_ms = self._backoff.compute_delay(attempt, config)
        hint = classification.retry_after_ms
        if hint:
            delay_ms = max(delay_ms, min(hint, config.max_delay_ms))
        return delay_ms

    def _abandon_attempt(self, key: str, holds_probe: bool) -> None:
        # Cancelled attempts record neither success nor failure.
        if holds_probe:
            self._registry.release(key)

    def _check_cancelled(self, cancel_token: CancelToken | None) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    async def _wait(self, delay: float, cancel_token: CancelToken | None) -> None:
        """Wait out a backoff delay, returning early if cancelled."""
        if cancel_token is None:
            await self._sleep(delay)
            return

        cancel_token.raise_if_cancelled()
        sleeper = asyncio.ensure_future(self._sleep(delay))
        canceller = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait(
                {sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()
        cancel_token.raise_if_cancelled()

    def _notify(
        self,
        callback: Callable[[int, float], Any] | None,
        retry_number: int,
        delay_ms: float,
    ) -> None:
        if callback is None:
            return
        try:
            result = callback(retry_number, delay_ms)
        except Exception:
            logger.exception("Retry callback failed", retry=retry_number)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background.add(task)
            task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Retry callback failed",
                error=describe_failure(task.exception()).message,
            )

    def get_retry_status(self, key: OperationContext | str) -> RetryStatus | None:
        """Get the retry status of the loop running under ``key``.

        Read-only; returns None when no retry loop is in progress.
        """
        if isinstance(key, OperationContext):
            key = key.breaker_key
        tracker = self._retrying.get(key)
        if tracker is None:
            return None
        remaining_ms = max(0.0, (tracker.next_retry_at - self._clock()) * 1000.0)
        return RetryStatus(
            attempt=tracker.attempt,
            max_retries=tracker.max_retries,
            ms_until_next_retry=remaining_ms,
            is_retrying=remaining_ms > 0,
        )

    def get_stats(self) -> dict[str, Any]:
        """Get executor statistics.

        Returns:
            Dict with counters, pending retries and breaker states
        """
        retrying: dict[str, Any] = {}
        for key in list(self._retrying):
            status = self.get_retry_status(key)
            if status is not None:
                retrying[key] = {
                    "attempt": status.attempt,
                    "max_retries": status.max_retries,
                    "ms_until_next_retry": status.ms_until_next_retry,
                }
        return {
            "name": self._name,
            "counters": self._counters.to_dict(),
            "retrying": retrying,
            "circuit_breakers": self._registry.get_stats(),
        }

    def reset(self) -> None:
        """Forget retry tracking and all breaker state."""
        self._retrying.clear()
        self._registry.reset()
        self._counters = _Counters()


def _as_context(context: OperationContext | str) -> OperationContext:
    if isinstance(context, OperationContext):
        return context
    return OperationContext(operation=str(context))
