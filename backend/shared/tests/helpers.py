"""Helpers shared by observation tests."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

POLL_TIMEOUT_SECONDS = 1.0
POLL_INTERVAL_SECONDS = 0.01


async def poll_until(condition: Callable[[], bool], timeout: float = POLL_TIMEOUT_SECONDS) -> None:
    """Yield to the event loop until condition() holds; fail after timeout."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def wait_until(condition: Callable[[], bool], timeout: float = POLL_TIMEOUT_SECONDS) -> None:
    """Blocking variant of poll_until for deliveries on worker threads."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError(f"condition not met within {timeout}s")
        time.sleep(POLL_INTERVAL_SECONDS)


async def settle(seconds: float = 0.1) -> None:
    """Give in-flight re-runs time to deliver before asserting nothing more arrived."""
    await asyncio.sleep(seconds)
