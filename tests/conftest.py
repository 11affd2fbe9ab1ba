"""Root pytest fixtures for resilient-ops tests."""

from __future__ import annotations

import random

import pytest

from resilient_ops.resilience import (
    BackoffPolicy,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    ResiliencePolicy,
    ResilientExecutor,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records delays and advances a fake clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)

    @property
    def delays_ms(self) -> list[float]:
        return [round(d * 1000.0, 3) for d in self.delays]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def breaker_config() -> CircuitBreakerConfig:
    return CircuitBreakerConfig(failure_threshold=5, cooldown_seconds=30.0)


@pytest.fixture
def registry(breaker_config: CircuitBreakerConfig, clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(breaker_config, clock=clock)


@pytest.fixture
def executor(
    registry: CircuitBreakerRegistry,
    breaker_config: CircuitBreakerConfig,
    sleep: RecordingSleep,
    clock: FakeClock,
) -> ResilientExecutor:
    """Executor with deterministic jitter, a fake clock and instant sleeps."""
    return ResilientExecutor(
        registry=registry,
        backoff=BackoffPolicy(rng=random.Random(42)),
        policy=ResiliencePolicy(breaker=breaker_config),
        sleep=sleep,
        clock=clock,
    )
