#!/usr/bin/env python3
"""
Resilient feed pagination example.

This example demonstrates wrapping paginated HTTP calls with the executor:
- Error classification of httpx failures
- Retry with exponential backoff and Retry-After handling
- A circuit breaker shared by every page of the feed
- Cancellation on teardown
- Polling retry status for a "retrying in Ns" indicator

Usage:
    export FEED_URL="https://api.example.com/v1/friends"
    export RESILIENT_OPS_POLICY_FILE="resilience.yaml"  # optional
    python examples/resilience.py
"""

import asyncio
import os

import httpx

from resilient_ops import ClassifiedError, OperationContext, ResilientExecutor, get_recovery_strategy
from resilient_ops.config import load_policy
from resilient_ops.resilience import CancelReason, CancelToken
from resilient_ops.telemetry import LogLevel, ResilienceLogger

FEED_URL = os.getenv("FEED_URL", "https://api.example.com/v1/friends")


async def fetch_page(client: httpx.AsyncClient, cursor: str | None) -> dict:
    """Fetch one page of the feed."""
    params = {"cursor": cursor} if cursor else {}
    response = await client.get(FEED_URL, params=params)
    response.raise_for_status()
    return response.json()


async def load_all_pages(executor: ResilientExecutor, token: CancelToken) -> list[dict]:
    """Page through the feed until the cursor runs out or a call fails."""
    ctx = OperationContext("load_more", namespace="friends_list")
    items: list[dict] = []
    cursor: str | None = None

    async with httpx.AsyncClient(timeout=10.0) as client:
        while True:
            try:
                page = await executor.run(
                    lambda: fetch_page(client, cursor),
                    ctx,
                    cancel_token=token,
                    on_retry_scheduled=lambda retry, delay_ms: print(
                        f"  Retry {retry} in {delay_ms / 1000:.1f}s"
                    ),
                )
            except ClassifiedError as e:
                strategy = get_recovery_strategy(e.category)
                print(f"{e.classification.title}: {e.user_message}")
                print(f"  Suggested: {', '.join(strategy.suggested_actions)}")
                break

            items.extend(page.get("items", []))
            cursor = page.get("next_cursor")
            print(f"Loaded {len(items)} items")
            if not cursor:
                break

    return items


async def poll_status(executor: ResilientExecutor, token: CancelToken) -> None:
    """Print the retry countdown while a retry is pending."""
    ctx = OperationContext("load_more", namespace="friends_list")
    while not token.is_cancelled:
        status = executor.get_retry_status(ctx)
        if status and status.is_retrying:
            print(
                f"  Retrying ({status.attempt}/{status.max_retries}) "
                f"in {status.ms_until_next_retry / 1000:.0f}s"
            )
        await asyncio.sleep(1)


async def main() -> None:
    """Run the pagination example with a teardown deadline."""
    ResilienceLogger.configure(level=LogLevel.INFO, format="text")
    executor = ResilientExecutor(policy=load_policy(), name="friends_feed")
    token = CancelToken()

    poller = asyncio.create_task(poll_status(executor, token))
    loader = asyncio.create_task(load_all_pages(executor, token))

    # Simulate the screen being closed after 60 seconds
    done, _ = await asyncio.wait({loader}, timeout=60)
    if not done:
        token.cancel(CancelReason.TEARDOWN)

    try:
        items = await loader
        print(f"Done: {len(items)} items")
    except asyncio.CancelledError:
        print("Cancelled on teardown")
    finally:
        token.cancel(CancelReason.SHUTDOWN)
        await poller

    print("Executor stats:")
    for key, value in executor.get_stats().items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    asyncio.run(main())
