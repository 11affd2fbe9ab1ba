"""
Per-key circuit breaker registry.

Implements the circuit breaker pattern with three states per operation key:
- Closed: Normal operation, calls pass through
- Open: Too many failures, calls fail fast until the cooldown elapses
- Half-Open: Cooldown elapsed, exactly one probing call is let through

Transitions out of Open are evaluated lazily when a key is read; there is no
background timer.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_ops.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("resilient_ops.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration shared by every key in a registry.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        cooldown_seconds: Time an open circuit rejects calls
        quiet_period_seconds: Idle time after which a closed entry is dropped
    """

    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    quiet_period_seconds: float = 300.0

    @classmethod
    def default(cls) -> CircuitBreakerConfig:
        """Create default configuration."""
        return cls()


@dataclass(frozen=True)
class CircuitBreakerState:
    """Read-only snapshot of one key's breaker.

    Attributes:
        key: Operation key
        state: Effective state at snapshot time
        failure_count: Failures since the last success
        last_failure_at: Clock reading of the last failure
        opened_at: Clock reading when the circuit last opened
    """

    key: str
    state: CircuitState
    failure_count: int
    last_failure_at: float | None
    opened_at: float | None


class _Entry:
    __slots__ = ("failure_count", "last_failure_at", "opened_at", "probe_started_at", "state")

    def __init__(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: float | None = None
        self.opened_at: float | None = None
        self.probe_started_at: float | None = None


class CircuitBreakerRegistry:
    """Registry of breaker states keyed by operation.

    Each read-modify-write of a key happens under one lock and never spans an
    await, so concurrent callers (threads or tasks) cannot lose an increment
    or miss the transition to Open.

    Example:
        >>> registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
        >>> if registry.is_allowed("friends_list_load"):
        ...     try:
        ...         data = await load()
        ...         registry.record_success("friends_list_load")
        ...     except Exception:
        ...         registry.record_failure("friends_list_load")
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize registry.

        Args:
            config: Breaker configuration applied to every key
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self._config = config or CircuitBreakerConfig()
        self._clock = clock or time.monotonic
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def _effective_state(self, entry: _Entry, now: float) -> CircuitState:
        if (
            entry.state == CircuitState.OPEN
            and entry.opened_at is not None
            and now - entry.opened_at >= self._config.cooldown_seconds
        ):
            return CircuitState.HALF_OPEN
        return entry.state

    def _is_stale(self, entry: _Entry, now: float) -> bool:
        return (
            entry.state == CircuitState.CLOSED
            and entry.last_failure_at is not None
            and now - entry.last_failure_at >= self._config.quiet_period_seconds
        )

    def _get_entry(self, key: str, now: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_stale(entry, now):
            del self._entries[key]
            return None

        return entry

    def _sweep(self, now: float) -> None:
        # Drops idle closed entries for keys that are never read again.
        stale = [key for key, entry in self._entries.items() if self._is_stale(entry, now)]
        for key in stale:
            del self._entries[key]

    def _transition(self, key: str, entry: _Entry, new_state: CircuitState, now: float) -> None:
        if new_state == entry.state:
            return

        old_state = entry.state
        entry.state = new_state

        if new_state == CircuitState.OPEN:
            entry.opened_at = now
            entry.probe_started_at = None
            logger.warning(
                "Circuit opened",
                breaker_key=key,
                failure_count=entry.failure_count,
                from_state=old_state.value,
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info("Circuit half-open, probing", breaker_key=key)
        elif new_state == CircuitState.CLOSED:
            entry.opened_at = None
            entry.probe_started_at = None
            logger.info("Circuit closed", breaker_key=key, from_state=old_state.value)

    def is_allowed(self, key: str) -> bool:
        """Check whether a call for ``key`` may proceed.

        Returns False only while the circuit is open and cooling down, or
        while a half-open probe is already in flight. The first call after
        the cooldown claims the probe slot.
        """
        with self._lock:
            now = self._clock()
            entry = self._get_entry(key, now)
            if entry is None:
                return True

            state = self._effective_state(entry, now)
            if state == CircuitState.CLOSED:
                return True

            if state == CircuitState.HALF_OPEN:
                self._transition(key, entry, CircuitState.HALF_OPEN, now)
                probe_expired = (
                    entry.probe_started_at is not None
                    and now - entry.probe_started_at >= self._config.cooldown_seconds
                )
                if entry.probe_started_at is None or probe_expired:
                    entry.probe_started_at = now
                    return True
                return False

            return False

    def record_failure(self, key: str) -> None:
        """Record a failed call for ``key``.

        Creates the entry on first failure. A failure while half-open reopens
        the circuit; otherwise the circuit opens once the threshold is reached.
        """
        with self._lock:
            now = self._clock()
            entry = self._get_entry(key, now)
            if entry is None:
                self._sweep(now)
                entry = _Entry()
                self._entries[key] = entry

            entry.failure_count += 1
            entry.last_failure_at = now

            state = self._effective_state(entry, now)
            if state == CircuitState.HALF_OPEN:
                entry.state = CircuitState.HALF_OPEN
                self._transition(key, entry, CircuitState.OPEN, now)
            elif state == CircuitState.OPEN:
                entry.opened_at = now
            elif entry.failure_count >= self._config.failure_threshold:
                self._transition(key, entry, CircuitState.OPEN, now)

    def record_success(self, key: str) -> None:
        """Record a successful call: failure count to 0, state to Closed."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.failure_count = 0
            self._transition(key, entry, CircuitState.CLOSED, now)
            entry.probe_started_at = None

    def release(self, key: str) -> None:
        """Give back a half-open probe slot without recording an outcome."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.probe_started_at = None

    def is_open(self, key: str) -> bool:
        """Check whether ``key`` is open and still cooling down (no side effects)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            return self._effective_state(entry, self._clock()) == CircuitState.OPEN

    def get_state(self, key: str) -> CircuitBreakerState | None:
        """Get a snapshot of ``key`` (no side effects).

        Returns:
            CircuitBreakerState, or None if the key has no recorded failures
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return CircuitBreakerState(
                key=key,
                state=self._effective_state(entry, self._clock()),
                failure_count=entry.failure_count,
                last_failure_at=entry.last_failure_at,
                opened_at=entry.opened_at,
            )

    def time_until_retry(self, key: str) -> float | None:
        """Seconds until ``key`` leaves the open state, or None if not open."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.opened_at is None:
                return None
            now = self._clock()
            if self._effective_state(entry, now) != CircuitState.OPEN:
                return None
            return max(0.0, self._config.cooldown_seconds - (now - entry.opened_at))

    def keys(self) -> list[str]:
        with self._lock:
            self._sweep(self._clock())
            return list(self._entries)

    def reset(self, key: str | None = None) -> None:
        """Forget breaker state for one key, or for all keys."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def get_stats(self) -> dict[str, Any]:
        """Get per-key statistics.

        Returns:
            Dict keyed by operation key
        """
        with self._lock:
            now = self._clock()
            self._sweep(now)
            return {
                key: {
                    "state": self._effective_state(entry, now).value,
                    "failure_count": entry.failure_count,
                    "last_failure_at": entry.last_failure_at,
                    "opened_at": entry.opened_at,
                }
                for key, entry in self._entries.items()
            }

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"CircuitBreakerRegistry(keys={len(self._entries)}, "
            f"threshold={self._config.failure_threshold}, "
            f"cooldown={self._config.cooldown_seconds}s)"
        )
