"""Shared fixtures: a settable clock and a scheduler that only fires when told to."""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest

from totpkit.auth.secret_manager import SecretManager
from totpkit.auth.totp import TOTPEngine
from totpkit.config import Settings

# 1234567890 is a multiple of 30, so this is the start of a 30s window
BOUNDARY = 1234567890.0

RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


class FakeClock:
    def __init__(self, now: float = BOUNDARY) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeHandle:
    when: float
    seq: int
    callback: Callable[[], None] = field(repr=False)
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fires due callbacks in time order while ``advance`` moves the clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.handles: list[FakeHandle] = []
        self.fail_next = 0
        self._skew_next = 0.0
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("timer slots exhausted")
        delay += self._skew_next
        self._skew_next = 0.0
        handle = FakeHandle(self.clock.now + delay, next(self._seq), callback)
        self.handles.append(handle)
        return handle

    def skew_next(self, seconds: float) -> None:
        """Make the next armed timer fire ``seconds`` late (negative: early)."""
        self._skew_next = seconds

    @property
    def pending(self) -> list[FakeHandle]:
        return sorted((h for h in self.handles if not h.cancelled), key=lambda h: (h.when, h.seq))

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.clock.now = max(self.clock.now, handle.when)
            handle.callback()
        self.clock.now = target

    def run_due(self) -> None:
        self.advance(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        countdown_interval_ms=250,
        frame_interval_ms=125,
        high_precision_throttle_ms=250,
    )


@pytest.fixture
def manager(settings: Settings) -> SecretManager:
    return SecretManager(settings)


@pytest.fixture
def engine(manager: SecretManager, clock: FakeClock, settings: Settings) -> TOTPEngine:
    return TOTPEngine(secret_manager=manager, clock=clock, settings=settings)
