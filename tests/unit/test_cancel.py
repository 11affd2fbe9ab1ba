"""Tests for cancel module."""

import asyncio

import pytest

from resilient_ops.resilience import (
    CancelHandle,
    CancelReason,
    CancelToken,
    create_cancel_pair,
)


class TestCancelToken:
    """Tests for CancelToken."""

    def test_initial_state(self) -> None:
        """Test initial token state."""
        token = CancelToken()
        assert token.is_cancelled is False
        assert token.reason is None

    def test_cancel(self) -> None:
        """Test cancellation."""
        token = CancelToken()
        result = token.cancel(CancelReason.TEARDOWN)

        assert result is True
        assert token.is_cancelled is True
        assert token.reason == CancelReason.TEARDOWN
        assert token.state.timestamp is not None

    def test_cancel_twice(self) -> None:
        """Test cancelling twice returns False."""
        token = CancelToken()
        assert token.cancel() is True
        assert token.cancel(CancelReason.SHUTDOWN) is False
        assert token.reason == CancelReason.USER_REQUEST

    def test_cancel_with_metadata(self) -> None:
        """Test cancellation with metadata."""
        token = CancelToken()
        token.cancel(CancelReason.SUPERSEDED, screen="friends_list")

        assert token.state.metadata["screen"] == "friends_list"

    @pytest.mark.asyncio
    async def test_wait(self) -> None:
        """Test waiting for cancellation."""
        token = CancelToken()

        async def cancel_later() -> None:
            await asyncio.sleep(0.01)
            token.cancel(CancelReason.TEARDOWN)

        task = asyncio.create_task(cancel_later())
        reason = await token.wait()
        await task

        assert reason == CancelReason.TEARDOWN

    @pytest.mark.asyncio
    async def test_wait_already_cancelled(self) -> None:
        """Test that waiting on a cancelled token returns immediately."""
        token = CancelToken()
        token.cancel(CancelReason.SHUTDOWN)

        assert await asyncio.wait_for(token.wait(), timeout=1) == CancelReason.SHUTDOWN

    def test_on_cancel_callback(self) -> None:
        """Test cancel callbacks."""
        token = CancelToken()
        reasons = []
        token.on_cancel(reasons.append)

        token.cancel(CancelReason.TEARDOWN)

        assert reasons == [CancelReason.TEARDOWN]

    def test_on_cancel_after_cancelled(self) -> None:
        """Test that late callbacks fire immediately."""
        token = CancelToken()
        token.cancel()
        reasons = []

        token.on_cancel(reasons.append)

        assert reasons == [CancelReason.USER_REQUEST]

    def test_failing_callback(self) -> None:
        """Test that a failing callback does not stop the others."""
        token = CancelToken()
        reasons = []

        def broken(reason: CancelReason) -> None:
            raise RuntimeError("boom")

        token.on_cancel(broken).on_cancel(reasons.append)
        token.cancel()

        assert reasons == [CancelReason.USER_REQUEST]

    def test_raise_if_cancelled(self) -> None:
        """Test raise_if_cancelled."""
        token = CancelToken()
        token.raise_if_cancelled()

        token.cancel()

        with pytest.raises(asyncio.CancelledError):
            token.raise_if_cancelled()


class TestCancelPair:
    """Tests for create_cancel_pair."""

    def test_pair(self) -> None:
        """Test that the handle controls the token."""
        handle, token = create_cancel_pair()
        assert isinstance(handle, CancelHandle)

        assert handle.cancel(CancelReason.TEARDOWN) is True

        assert token.is_cancelled is True
        assert handle.is_cancelled is True
        assert handle.reason == CancelReason.TEARDOWN
