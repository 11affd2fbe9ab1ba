"""Tests for the resilient executor."""

import asyncio
import logging
import random

import pytest

from resilient_ops.errors import ClassifiedError, ErrorCategory
from resilient_ops.resilience import (
    BackoffPolicy,
    CancelReason,
    CancelToken,
    CircuitBreakerRegistry,
    CircuitState,
    OperationContext,
    ResiliencePolicy,
    ResilientExecutor,
    RetryConfig,
    RetryStatus,
)

NO_JITTER = RetryConfig(max_retries=3, base_delay_ms=1000, max_delay_ms=10000, jitter=False)


class StatusError(Exception):
    """Exception carrying a status code."""

    def __init__(self, status_code: int, retry_after: float | None = None) -> None:
        super().__init__(f"request failed with status {status_code}")
        self.status_code = status_code
        self.retry_after = retry_after


class FlakyOperation:
    """Operation that fails a number of times, then succeeds."""

    def __init__(self, failures: int, error: Exception | None = None, result: str = "page") -> None:
        self.failures = failures
        self.error = error or ConnectionError("Network request failed")
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


async def _never(seconds: float) -> None:
    await asyncio.Event().wait()


class TestRetryLoop:
    """Tests for the basic retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, executor: ResilientExecutor, sleep) -> None:
        """Test that a successful operation is called once."""
        op = FlakyOperation(failures=0)
        assert await executor.run(op, "load") == "page"
        assert op.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, executor: ResilientExecutor, sleep, registry) -> None:
        """Test recovery after transient failures."""
        op = FlakyOperation(failures=2)

        result = await executor.run(op, "load", NO_JITTER)

        assert result == "page"
        assert op.calls == 3
        assert sleep.delays_ms == [1000.0, 2000.0]
        state = registry.get_state("load")
        assert state.failure_count == 0
        assert state.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_exhausts_retries(self, executor: ResilientExecutor, sleep) -> None:
        """Test that max_retries=3 means four invocations in total."""
        op = FlakyOperation(failures=100)

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load", NO_JITTER)

        assert op.calls == 4
        assert sleep.delays_ms == [1000.0, 2000.0, 4000.0]
        assert exc_info.value.category == ErrorCategory.NETWORK
        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(
        self, executor: ResilientExecutor, sleep, registry
    ) -> None:
        """Test that authentication failures are never retried."""
        op = FlakyOperation(failures=100, error=StatusError(401))

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load", NO_JITTER)

        assert op.calls == 1
        assert sleep.delays == []
        assert exc_info.value.category == ErrorCategory.AUTHENTICATION
        assert exc_info.value.retryable is False
        assert registry.get_state("load").failure_count == 1

    @pytest.mark.asyncio
    async def test_category_defaults_used(self, executor: ResilientExecutor, sleep) -> None:
        """Test per-category retry budgets when no config is passed."""
        op = FlakyOperation(failures=100, error=StatusError(503))

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load")

        assert exc_info.value.category == ErrorCategory.SERVER
        assert op.calls == 3
        first, second = sleep.delays_ms
        assert 2000.0 <= first <= 2500.0
        assert 3000.0 <= second <= 5000.0

    @pytest.mark.asyncio
    async def test_retry_condition_stops_early(self, executor: ResilientExecutor) -> None:
        """Test that a retry condition returning False ends the loop."""
        op = FlakyOperation(failures=100)
        config = NO_JITTER.with_overrides(retry_condition=lambda attempt, c: False)

        with pytest.raises(ClassifiedError):
            await executor.run(op, "load", config)

        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_retry_after_hint_extends_delay(self, executor: ResilientExecutor, sleep) -> None:
        """Test that a server retry hint longer than the backoff wins."""
        op = FlakyOperation(failures=1, error=StatusError(429, retry_after=5))

        await executor.run(op, "load", NO_JITTER)

        assert sleep.delays_ms == [5000.0]

    @pytest.mark.asyncio
    async def test_retry_after_hint_capped(self, executor: ResilientExecutor, sleep) -> None:
        """Test that a server retry hint never exceeds the maximum delay."""
        op = FlakyOperation(failures=1, error=StatusError(429, retry_after=3600))

        await executor.run(op, "load", NO_JITTER)

        assert sleep.delays_ms == [10000.0]

    @pytest.mark.asyncio
    async def test_infinite_retry_after_ignored(self, executor: ResilientExecutor, sleep) -> None:
        """Test that an infinite retry hint falls back to the computed backoff."""
        op = FlakyOperation(failures=1, error=StatusError(429, retry_after=float("inf")))

        await executor.run(op, "load", NO_JITTER)

        assert sleep.delays_ms == [1000.0]

    @pytest.mark.asyncio
    async def test_unprintable_error(self, executor: ResilientExecutor, registry) -> None:
        """Test that an error whose text cannot be read is still classified and recorded."""

        class UnprintableError(Exception):
            def __str__(self) -> str:
                raise RuntimeError("cannot render")

        op = FlakyOperation(failures=100, error=UnprintableError())

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load", RetryConfig.no_retry())

        assert exc_info.value.category == ErrorCategory.UNKNOWN
        assert registry.get_state("load").failure_count == 1

    @pytest.mark.asyncio
    async def test_operation_context(self, executor: ResilientExecutor, registry) -> None:
        """Test that the context's derived breaker key is used."""
        ctx = OperationContext("load_more", namespace="friends_list", entity_id="u1")
        op = FlakyOperation(failures=100, error=StatusError(400))

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, ctx)

        assert registry.keys() == ["friends_list_load_more"]
        assert exc_info.value.classification.context is ctx

    @pytest.mark.asyncio
    async def test_retry_logged(self, executor: ResilientExecutor, caplog) -> None:
        """Test that scheduled retries are logged with their delay."""
        caplog.set_level(logging.WARNING, logger="resilient_ops.executor")

        await executor.run(FlakyOperation(failures=1), "load", NO_JITTER)

        records = [r for r in caplog.records if r.getMessage() == "Retry scheduled"]
        assert len(records) == 1
        assert records[0].extra_fields["delay_ms"] == 1000.0
        assert records[0].extra_fields["category"] == "NETWORK_ERROR"


class TestCircuitBreaking:
    """Tests for breaker integration."""

    @pytest.mark.asyncio
    async def test_breaker_stops_retry_loop(
        self, executor: ResilientExecutor, registry
    ) -> None:
        """Test that the loop stops once the breaker opens."""
        op = FlakyOperation(failures=100)

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load", NO_JITTER.with_overrides(max_retries=10))

        assert op.calls == 5
        assert exc_info.value.category == ErrorCategory.NETWORK
        assert registry.is_open("load") is True

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self, executor: ResilientExecutor, registry) -> None:
        """Test that an open breaker rejects without calling the operation."""
        for _ in range(5):
            registry.record_failure("load")
        op = FlakyOperation(failures=0)

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(op, "load")

        assert op.calls == 0
        assert exc_info.value.category == ErrorCategory.CIRCUIT_BREAKER_OPEN
        assert exc_info.value.attempts == 0
        assert exc_info.value.user_message == (
            "Service temporarily unavailable. Please retry in 30s."
        )

    @pytest.mark.asyncio
    async def test_half_open_probe_success_closes(
        self, executor: ResilientExecutor, registry, clock
    ) -> None:
        """Test that a successful probe closes the breaker."""
        for _ in range(5):
            registry.record_failure("load")
        clock.advance(30)

        assert await executor.run(FlakyOperation(failures=0), "load") == "page"
        assert registry.get_state("load").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_allows_single_probe(
        self, executor: ResilientExecutor, registry, clock
    ) -> None:
        """Test that a concurrent caller is rejected while a probe is in flight."""
        for _ in range(5):
            registry.record_failure("load")
        clock.advance(30)
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "probe"

        probe = asyncio.create_task(executor.run(slow, "load"))
        await asyncio.sleep(0)

        with pytest.raises(ClassifiedError) as exc_info:
            await executor.run(FlakyOperation(failures=0), "load")
        assert exc_info.value.category == ErrorCategory.CIRCUIT_BREAKER_OPEN

        gate.set()
        assert await probe == "probe"
        assert registry.get_state("load").state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_keys_are_isolated(self, executor: ResilientExecutor, registry) -> None:
        """Test that an open breaker on one key does not block another."""
        for _ in range(5):
            registry.record_failure("friends_list_load")

        result = await executor.run(FlakyOperation(failures=0), "notifications_load")

        assert result == "page"

    @pytest.mark.asyncio
    async def test_shared_registry(self, registry, sleep, clock) -> None:
        """Test that executors sharing a registry share breaker state."""
        first = ResilientExecutor(registry=registry, sleep=sleep, clock=clock)
        second = ResilientExecutor(registry=registry, sleep=sleep, clock=clock)

        with pytest.raises(ClassifiedError):
            await first.run(FlakyOperation(failures=100), "load", NO_JITTER.with_overrides(max_retries=10))

        with pytest.raises(ClassifiedError) as exc_info:
            await second.run(FlakyOperation(failures=0), "load")
        assert exc_info.value.category == ErrorCategory.CIRCUIT_BREAKER_OPEN

    def test_default_registry_uses_policy(self) -> None:
        """Test that a private registry is built from the policy."""
        policy = ResiliencePolicy.default()
        executor = ResilientExecutor(policy=policy)
        assert executor.registry.config is policy.breaker
        assert executor.policy is policy
        assert executor.name == "default"


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, registry, clock) -> None:
        """Test that cancelling mid-backoff aborts without another attempt."""
        executor = ResilientExecutor(registry=registry, sleep=_never, clock=clock)
        token = CancelToken()
        scheduled = asyncio.Event()
        op = FlakyOperation(failures=100)

        task = asyncio.create_task(
            executor.run(
                op,
                "load",
                NO_JITTER,
                cancel_token=token,
                on_retry_scheduled=lambda retry, delay_ms: scheduled.set(),
            )
        )
        await scheduled.wait()
        token.cancel(CancelReason.TEARDOWN)

        with pytest.raises(asyncio.CancelledError):
            await task

        assert op.calls == 1
        assert registry.get_state("load").failure_count == 1
        assert executor.get_retry_status("load") is None
        assert executor.get_stats()["counters"]["cancelled"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, executor: ResilientExecutor, registry) -> None:
        """Test that a pre-cancelled token never invokes the operation."""
        token = CancelToken()
        token.cancel()
        op = FlakyOperation(failures=0)

        with pytest.raises(asyncio.CancelledError):
            await executor.run(op, "load", cancel_token=token)

        assert op.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_attempt_failure_not_recorded(
        self, executor: ResilientExecutor, registry
    ) -> None:
        """Test that a failure after cancellation is not recorded."""
        token = CancelToken()

        async def op() -> str:
            token.cancel()
            raise ConnectionError("Network request failed")

        with pytest.raises(asyncio.CancelledError):
            await executor.run(op, "load", cancel_token=token)

        assert registry.get_state("load") is None

    @pytest.mark.asyncio
    async def test_cancelled_attempt_success_not_recorded(
        self, executor: ResilientExecutor, registry
    ) -> None:
        """Test that a success after cancellation is not recorded either."""
        registry.record_failure("load")
        token = CancelToken()

        async def op() -> str:
            token.cancel()
            return "page"

        with pytest.raises(asyncio.CancelledError):
            await executor.run(op, "load", cancel_token=token)

        assert registry.get_state("load").failure_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_probe_is_released(
        self, executor: ResilientExecutor, registry, clock
    ) -> None:
        """Test that a cancelled half-open probe frees the probe slot."""
        for _ in range(5):
            registry.record_failure("load")
        clock.advance(30)
        token = CancelToken()

        async def op() -> str:
            token.cancel()
            return "page"

        with pytest.raises(asyncio.CancelledError):
            await executor.run(op, "load", cancel_token=token)

        assert registry.is_allowed("load") is True

    @pytest.mark.asyncio
    async def test_task_cancellation(self, registry, clock) -> None:
        """Test that cancelling the surrounding task stops the loop."""
        executor = ResilientExecutor(registry=registry, sleep=_never, clock=clock)
        scheduled = asyncio.Event()
        op = FlakyOperation(failures=100)

        task = asyncio.create_task(
            executor.run(
                op,
                "load",
                NO_JITTER,
                on_retry_scheduled=lambda retry, delay_ms: scheduled.set(),
            )
        )
        await scheduled.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert op.calls == 1
        assert executor.get_retry_status("load") is None


class TestRetryCallbacks:
    """Tests for on_retry_scheduled."""

    @pytest.mark.asyncio
    async def test_callback_arguments(self, executor: ResilientExecutor) -> None:
        """Test that the callback receives retry number and delay."""
        calls = []

        await executor.run(
            FlakyOperation(failures=2),
            "load",
            NO_JITTER,
            on_retry_scheduled=lambda retry, delay_ms: calls.append((retry, delay_ms)),
        )

        assert calls == [(1, 1000.0), (2, 2000.0)]

    @pytest.mark.asyncio
    async def test_async_callback(self, executor: ResilientExecutor) -> None:
        """Test that awaitable callbacks are scheduled in the background."""
        calls = []

        async def on_retry(retry: int, delay_ms: float) -> None:
            calls.append(retry)

        await executor.run(FlakyOperation(failures=1), "load", NO_JITTER, on_retry_scheduled=on_retry)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert calls == [1]

    @pytest.mark.asyncio
    async def test_failing_callback_is_ignored(self, executor: ResilientExecutor) -> None:
        """Test that a raising callback does not break the loop."""

        def on_retry(retry: int, delay_ms: float) -> None:
            raise RuntimeError("ui gone")

        result = await executor.run(
            FlakyOperation(failures=1), "load", NO_JITTER, on_retry_scheduled=on_retry
        )

        assert result == "page"


class TestRetryStatus:
    """Tests for get_retry_status."""

    @pytest.mark.asyncio
    async def test_status_during_backoff(self, registry, clock) -> None:
        """Test polling the status while a retry is pending."""
        statuses: list[RetryStatus | None] = []

        async def sleep(seconds: float) -> None:
            statuses.append(executor.get_retry_status("load"))
            clock.advance(seconds)

        executor = ResilientExecutor(registry=registry, sleep=sleep, clock=clock)

        await executor.run(FlakyOperation(failures=2), "load", NO_JITTER)

        assert statuses == [
            RetryStatus(attempt=1, max_retries=3, ms_until_next_retry=1000.0, is_retrying=True),
            RetryStatus(attempt=2, max_retries=3, ms_until_next_retry=2000.0, is_retrying=True),
        ]
        assert executor.get_retry_status("load") is None

    @pytest.mark.asyncio
    async def test_status_by_context(self, registry, clock) -> None:
        """Test polling with an OperationContext."""
        ctx = OperationContext("load_more", namespace="friends_list")
        statuses = []

        async def sleep(seconds: float) -> None:
            statuses.append(executor.get_retry_status(ctx))

        executor = ResilientExecutor(registry=registry, sleep=sleep, clock=clock)
        await executor.run(FlakyOperation(failures=1), ctx, NO_JITTER)

        assert statuses[0] is not None
        assert statuses[0].attempt == 1

    @pytest.mark.asyncio
    async def test_status_elapsed(self, registry, clock) -> None:
        """Test that an elapsed delay reports not retrying."""
        statuses = []

        async def sleep(seconds: float) -> None:
            clock.advance(seconds + 1)
            statuses.append(executor.get_retry_status("load"))

        executor = ResilientExecutor(registry=registry, sleep=sleep, clock=clock)
        await executor.run(FlakyOperation(failures=1), "load", NO_JITTER)

        assert statuses[0].ms_until_next_retry == 0.0
        assert statuses[0].is_retrying is False

    def test_status_unknown_key(self, executor: ResilientExecutor) -> None:
        """Test that an idle key has no status."""
        assert executor.get_retry_status("load") is None


class TestRunWithResult:
    """Tests for run_with_result."""

    @pytest.mark.asyncio
    async def test_success(self, executor: ResilientExecutor) -> None:
        """Test a successful result."""
        result = await executor.run_with_result(FlakyOperation(failures=2), "load", NO_JITTER)

        assert result.success is True
        assert result.value == "page"
        assert result.error is None
        assert result.attempts == 3
        assert result.total_delay_ms == 3000.0

    @pytest.mark.asyncio
    async def test_failure(self, executor: ResilientExecutor) -> None:
        """Test that failures come back as values."""
        result = await executor.run_with_result(
            FlakyOperation(failures=100, error=StatusError(401)), "load"
        )

        assert result.success is False
        assert result.value is None
        assert result.error.category == ErrorCategory.AUTHENTICATION
        assert result.attempts == 1


class TestExecutorStats:
    """Tests for executor statistics and reset."""

    @pytest.mark.asyncio
    async def test_stats(self, executor: ResilientExecutor) -> None:
        """Test counters after a mix of outcomes."""
        await executor.run(FlakyOperation(failures=1), "a", NO_JITTER)
        with pytest.raises(ClassifiedError):
            await executor.run(FlakyOperation(failures=100, error=StatusError(400)), "b")

        stats = executor.get_stats()
        assert stats["name"] == "default"
        assert stats["counters"]["runs"] == 2
        assert stats["counters"]["successes"] == 1
        assert stats["counters"]["failures"] == 1
        assert stats["counters"]["retries"] == 1
        assert stats["circuit_breakers"]["b"]["failure_count"] == 1

    @pytest.mark.asyncio
    async def test_reset(self, executor: ResilientExecutor, registry) -> None:
        """Test that reset clears breaker state and counters."""
        with pytest.raises(ClassifiedError):
            await executor.run(FlakyOperation(failures=100, error=StatusError(400)), "b")

        executor.reset()

        assert len(registry) == 0
        assert executor.get_stats()["counters"]["runs"] == 0

    @pytest.mark.asyncio
    async def test_deterministic_with_seeded_rng(self, registry, clock) -> None:
        """Test that seeded backoff gives reproducible delays."""
        delays = []
        for _ in range(2):
            recorded = []

            async def sleep(seconds: float) -> None:
                recorded.append(seconds)

            executor = ResilientExecutor(
                registry=CircuitBreakerRegistry(clock=clock),
                backoff=BackoffPolicy(rng=random.Random(3)),
                sleep=sleep,
                clock=clock,
            )
            with pytest.raises(ClassifiedError):
                await executor.run(FlakyOperation(failures=100), "load", RetryConfig(max_retries=3))
            delays.append(recorded)

        assert delays[0] == delays[1]
        assert len(delays[0]) == 3
