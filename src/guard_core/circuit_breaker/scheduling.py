"""Clock and timer abstractions used for breaker recovery.

Breakers never sleep or read wall-clock time directly. Both the time source
and the deferred-callback mechanism are injected, so tests can advance time
deterministically and owners can cancel a pending recovery timer.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Protocol

Clock = Callable[[], float]


class TimerHandle(Protocol):
    """Handle for one pending scheduled callback."""

    def cancel(self) -> None:
        """Cancel the callback if it has not run yet."""


class Scheduler(Protocol):
    """Schedule a callback to run once after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds and return its handle."""


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` instances."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(delay, 0.0), callback)
        timer.daemon = True
        timer.start()
        return timer


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later``.

    When no loop is given, the running loop at scheduling time is used, so
    scheduling must then happen from inside a coroutine or loop callback.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = asyncio.get_running_loop() if self._loop is None else self._loop
        return loop.call_later(max(delay, 0.0), callback)
