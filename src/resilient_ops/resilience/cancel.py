"""
Cancellation control for retry loops.

A CancelToken is passed into ``ResilientExecutor.run`` and checked before each
attempt, after each attempt and while waiting out a backoff delay.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from resilient_ops.telemetry.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger("resilient_ops.cancel")


class CancelReason(str, Enum):
    """Reasons for cancellation."""

    USER_REQUEST = "user_request"
    TEARDOWN = "teardown"
    SUPERSEDED = "superseded"
    SHUTDOWN = "shutdown"


@dataclass
class CancelState:
    """State of a cancellation token.

    Attributes:
        cancelled: Whether cancellation was requested
        reason: Reason for cancellation
        timestamp: Time of cancellation
    """

    cancelled: bool = False
    reason: CancelReason | None = None
    timestamp: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CancelToken:
    """Cancellation token for a retry loop.

    Example:
        >>> token = CancelToken()
        >>> task = asyncio.create_task(
        ...     executor.run(load_friends, ctx, cancel_token=token)
        ... )
        >>> # Component teardown
        >>> token.cancel(CancelReason.TEARDOWN)
    """

    def __init__(self) -> None:
        self._state = CancelState()
        self._event: asyncio.Event | None = None
        self._callbacks: list[Callable[[CancelReason], Any]] = []

    def _get_event(self) -> asyncio.Event:
        # Created lazily so a token can be built outside a running loop.
        if self._event is None:
            self._event = asyncio.Event()
            if self._state.cancelled:
                self._event.set()
        return self._event

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        """Request cancellation.

        Args:
            reason: Reason for cancellation
            **metadata: Additional metadata

        Returns:
            True if cancellation was newly requested, False if already cancelled
        """
        if self._state.cancelled:
            return False

        self._state.cancelled = True
        self._state.reason = reason
        self._state.timestamp = time.time()
        self._state.metadata.update(metadata)

        if self._event is not None:
            self._event.set()

        for callback in self._callbacks:
            self._invoke(callback, reason)

        return True

    @staticmethod
    def _invoke(callback: Callable[[CancelReason], Any], reason: CancelReason) -> None:
        try:
            result = callback(reason)
            if asyncio.iscoroutine(result):
                _ = asyncio.ensure_future(result)  # noqa: RUF006
        except Exception:
            logger.exception("Cancel callback failed", reason=reason.value)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._state.cancelled

    @property
    def reason(self) -> CancelReason | None:
        """Get cancellation reason."""
        return self._state.reason

    @property
    def state(self) -> CancelState:
        """Get full cancellation state."""
        return self._state

    async def wait(self) -> CancelReason:
        """Wait until cancellation is requested.

        Returns:
            Cancellation reason
        """
        await self._get_event().wait()
        return self._state.reason or CancelReason.USER_REQUEST

    def on_cancel(self, callback: Callable[[CancelReason], Any]) -> CancelToken:
        """Register a callback to be called on cancellation.

        Args:
            callback: Callback function

        Returns:
            Self for chaining
        """
        self._callbacks.append(callback)
        if self._state.cancelled and self._state.reason:
            self._invoke(callback, self._state.reason)
        return self

    def raise_if_cancelled(self) -> None:
        """Raise CancelledError if cancelled.

        Raises:
            asyncio.CancelledError: If cancellation was requested
        """
        if self._state.cancelled:
            raise asyncio.CancelledError(str(self._state.reason.value if self._state.reason else ""))


class CancelHandle:
    """Public side of a token pair: lets a caller cancel without exposing waits."""

    def __init__(self, token: CancelToken) -> None:
        self._token = token

    def cancel(
        self,
        reason: CancelReason = CancelReason.USER_REQUEST,
        **metadata: Any,
    ) -> bool:
        return self._token.cancel(reason, **metadata)

    @property
    def is_cancelled(self) -> bool:
        return self._token.is_cancelled

    @property
    def reason(self) -> CancelReason | None:
        return self._token.reason


def create_cancel_pair() -> tuple[CancelHandle, CancelToken]:
    """Create a cancel handle and token pair.

    Returns:
        Tuple of (CancelHandle, CancelToken)
    """
    token = CancelToken()
    return CancelHandle(token), token
