"""
Integration test helpers.

Paginated feed calls made through a real httpx.AsyncClient whose transport is
replaced by pytest-httpx.
"""

from __future__ import annotations

from typing import Any

import httpx

FRIENDS_URL = "https://api.example.com/v1/friends"


def friends_page(cursor: str | None = None, count: int = 2) -> dict[str, Any]:
    """Create a mock page of the friends list."""
    start = int(cursor or 0)
    return {
        "items": [{"id": f"u{start + i}", "name": f"Friend {start + i}"} for i in range(count)],
        "next_cursor": str(start + count),
    }


async def fetch_friends_page(client: httpx.AsyncClient, cursor: str = "0") -> dict[str, Any]:
    """Fetch one page, raising httpx.HTTPStatusError on error statuses."""
    response = await client.get(FRIENDS_URL, params={"cursor": cursor})
    response.raise_for_status()
    return response.json()
