"""Execution contexts on which observation callbacks run."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()


class Scheduler(Protocol):
    """Runs callback actions on a designated execution context."""

    def schedule(self, action: Callable[[], None]) -> None: ...


class AsyncioScheduler:
    """Run actions on an asyncio event loop, in the order they were scheduled.

    Safe to call from any thread. Binds to the running loop when no loop is
    given, so construct it from inside a coroutine.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop if loop is not None else asyncio.get_running_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def schedule(self, action: Callable[[], None]) -> None:
        try:
            self._loop.call_soon_threadsafe(action)
        except RuntimeError:
            logger.warning("event loop is closed, dropping scheduled delivery")


class ImmediateScheduler:
    """Run actions synchronously on the thread that schedules them."""

    def schedule(self, action: Callable[[], None]) -> None:
        action()
