"""Host timer facilities the TimerService arms its one-shot timers on.

A scheduler only needs ``call_later(delay_s, fn)`` returning a handle with
``cancel()``. Recurring timers are built by re-arming from the callback, so
every tick can recompute its delay from the wall clock.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Runs each callback on its own daemon ``threading.Timer`` thread."""

    def __init__(self, name: str = "totp-timer") -> None:
        self.name = name

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        t = threading.Timer(max(delay, 0.0), callback)
        t.name = self.name
        t.daemon = True
        t.start()
        return t


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop via ``loop.call_later``.

    Must be used from the loop's own thread, like any ``call_later`` call.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback)
