"""Period-aligned refresh timer and countdown for TOTP displays.

States: idle -> running -> idle. ``start`` fires the callback right away,
then again on every period boundary of wall-clock time (xx:xx:00, :30 for
a 30s period). Countdowns are a separate lane that reports the seconds left
in the current window at a short fixed interval.

Every tick recomputes its delay from the clock instead of assuming ticks are
evenly spaced, so a suspended process or an early/late timer thread
self-corrects on the next tick.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from totpkit.auth.totp import time_remaining, time_step
from totpkit.config import DEFAULT_PERIOD, Settings
from totpkit.config import settings as default_settings
from totpkit.timing.scheduling import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger(__name__)

CountdownCallback = Callable[[int], None]
ProgressCallback = Callable[[int, float], None]


@dataclass
class _Lane:
    """One independently cancellable timer chain."""
    name: str
    handle: TimerHandle | None = None
    active: bool = False
    generation: int = 0
    stalled: bool = False
    fire: Callable[[], None] | None = None
    next_delay: Callable[[], float] | None = None
    last_step: int | None = None


class TimerService:
    """Drives TOTP refresh callbacks on period boundaries.

    One instance owns one main lane, one countdown lane and one lane for
    ``sync_to_time_boundary``. With the threading scheduler callbacks arrive
    on timer threads, so lane state is only touched under ``_lock`` and each
    chain carries a generation number that turns stale fires into no-ops.
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self._lock = threading.RLock()
        self._period = DEFAULT_PERIOD
        self._running = False
        self._main = _Lane("main")
        self._countdown = _Lane("countdown")
        self._sync = _Lane("sync")

    # --- Lifecycle ---

    def start(self, callback: Callable[[], None], period: int = DEFAULT_PERIOD) -> None:
        """Call ``callback`` now and on every following period boundary.

        A running schedule is cancelled first, so restarting never leaves two
        chains alive. A countdown started separately keeps running.
        """
        _check_period(period)
        lane = self._main
        with self._lock:
            self._cancel(lane)
            self._period = period
            self._running = True
            gen = self._activate(lane)
            lane.last_step = self.get_current_time_step(period)

        logger.debug("Timer started with %ds period", period)
        self._invoke(callback)

        def fire() -> None:
            if not self._begin_fire(lane, gen):
                return
            step = self.get_current_time_step(period)
            # a fire just before the boundary only re-arms for the remainder
            if step != lane.last_step:
                lane.last_step = step
                self._invoke_current(lane, gen, callback)
            self._arm(lane, gen, fire, lambda: self.get_time_to_next_update(period) / 1000)
            self._revive_stalled()

        self._arm(lane, gen, fire, lambda: self.get_time_to_next_update(period) / 1000)

    def stop(self) -> None:
        """Cancel every pending timer and go idle. Safe to call repeatedly."""
        with self._lock:
            was_running = self._running
            self._running = False
            for lane in self._lanes():
                self._cancel(lane)
        if was_running:
            logger.debug("Timer stopped")

    def cleanup(self) -> None:
        self.stop()

    def is_running(self) -> bool:
        return self._running

    def status(self) -> dict[str, Any]:
        """Snapshot for logs and the CLI."""
        with self._lock:
            return {
                "running": self._running,
                "period": self._period,
                "lanes": {
                    lane.name: {"active": lane.active, "stalled": lane.stalled}
                    for lane in self._lanes()
                },
            }

    # --- Countdown ---

    def start_countdown(self, callback: CountdownCallback, period: int = DEFAULT_PERIOD) -> None:
        """Report remaining seconds now and then every ``countdown_interval_ms``.

        Independent of ``start``: it has its own handle and may run alongside.
        """
        _check_period(period)
        lane = self._countdown
        with self._lock:
            self._cancel(lane)
            gen = self._activate(lane)
        interval = self.settings.countdown_interval_ms / 1000

        self._invoke(callback, self.get_time_remaining(period))

        def fire() -> None:
            if not self._begin_fire(lane, gen):
                return
            self._invoke_current(lane, gen, callback, self.get_time_remaining(period))
            self._arm(lane, gen, fire, lambda: interval)
            self._revive_stalled()

        self._arm(lane, gen, fire, lambda: interval)

    def stop_countdown(self) -> None:
        with self._lock:
            self._cancel(self._countdown)

    def sync_to_time_boundary(self, callback: Callable[[], None], period: int = DEFAULT_PERIOD) -> None:
        """Call ``callback`` once, at the next period boundary."""
        _check_period(period)
        lane = self._sync
        with self._lock:
            self._cancel(lane)
            gen = self._activate(lane)

        def fire() -> None:
            with self._lock:
                if not self._begin_fire(lane, gen):
                    return
                lane.active = False
                self._invoke(callback)

        self._arm(lane, gen, fire, lambda: self.get_time_to_next_update(period) / 1000)

    # --- Derived values ---

    def get_time_to_next_update(self, period: int | None = None) -> int:
        """Milliseconds until the next boundary, in ``(0, period * 1000]``."""
        period_ms = _check_period(period or self._period) * 1000
        return period_ms - (self._now_ms() % period_ms)

    def get_time_remaining(self, period: int | None = None) -> int:
        return time_remaining(self.clock(), period or self._period)

    def get_current_time_step(self, period: int | None = None) -> int:
        return time_step(self.clock(), period or self._period)

    def get_delay_to_time_step(self, target_step: int, period: int | None = None) -> int:
        """Milliseconds until ``target_step`` begins; past steps mean the next one."""
        period = _check_period(period or self._period)
        current = self.get_current_time_step(period)
        if target_step <= current:
            target_step = current + 1
        return target_step * period * 1000 - self._now_ms()

    def get_progress_percentage(self, period: int | None = None) -> float:
        """Share of the current window already elapsed, in ``[0, 100)``."""
        period_ms = _check_period(period or self._period) * 1000
        return (self._now_ms() % period_ms) / period_ms * 100

    def is_near_expiry(self, period: int | None = None, threshold_seconds: int | None = None) -> bool:
        if threshold_seconds is None:
            threshold_seconds = self.settings.near_expiry_threshold_s
        return self.get_time_remaining(period) <= threshold_seconds

    # --- Internals ---

    def _now_ms(self) -> int:
        return math.floor(self.clock() * 1000)

    def _lanes(self) -> tuple[_Lane, ...]:
        return (self._main, self._countdown, self._sync)

    def _activate(self, lane: _Lane) -> int:
        lane.active = True
        lane.stalled = False
        return lane.generation

    def _cancel(self, lane: _Lane) -> None:
        if lane.handle is not None:
            lane.handle.cancel()
        lane.handle = None
        lane.active = False
        lane.stalled = False
        lane.fire = None
        lane.next_delay = None
        lane.last_step = None
        lane.generation += 1

    def _is_current(self, lane: _Lane, gen: int) -> bool:
        return lane.active and lane.generation == gen

    def _begin_fire(self, lane: _Lane, gen: int) -> bool:
        with self._lock:
            if not self._is_current(lane, gen):
                return False
            lane.handle = None
            return True

    def _arm(
        self,
        lane: _Lane,
        gen: int,
        fire: Callable[[], None],
        next_delay: Callable[[], float],
    ) -> None:
        with self._lock:
            if not self._is_current(lane, gen):
                return
            lane.fire = fire
            lane.next_delay = next_delay
            try:
                lane.handle = self.scheduler.call_later(next_delay(), fire)
                lane.stalled = False
            except Exception:
                lane.handle = None
                lane.stalled = True
                logger.warning(
                    "Failed to schedule %s timer, retrying in %dms",
                    lane.name,
                    self.settings.retry_backoff_ms,
                    exc_info=True,
                )
                self._schedule_retry(lane, gen, fire, next_delay)

    def _schedule_retry(
        self,
        lane: _Lane,
        gen: int,
        fire: Callable[[], None],
        next_delay: Callable[[], float],
    ) -> None:
        """Arm a backoff one-shot that re-arms ``lane``; its handle stands in for the lane's."""

        def retry() -> None:
            if not self._begin_fire(lane, gen):
                return
            logger.info("Re-arming stalled %s timer", lane.name)
            self._arm(lane, gen, fire, next_delay)

        try:
            lane.handle = self.scheduler.call_later(self.settings.retry_backoff_ms / 1000, retry)
        except Exception:
            logger.error(
                "Could not schedule a retry for %s timer, waiting for another lane to tick",
                lane.name,
                exc_info=True,
            )

    def _revive_stalled(self) -> None:
        with self._lock:
            for lane in self._lanes():
                # a pending handle on a stalled lane is its own retry
                if lane.active and lane.stalled and lane.handle is None and lane.fire and lane.next_delay:
                    logger.info("Re-arming stalled %s timer", lane.name)
                    self._arm(lane, lane.generation, lane.fire, lane.next_delay)

    def _invoke_current(self, lane: _Lane, gen: int, callback: Callable[..., None], *args: Any) -> None:
        """Run ``callback`` only if ``lane`` was not cancelled since this fire began.

        Holding the lock through the call means a ``stop()`` from another
        thread either wins before the check or returns after the callback.
        """
        with self._lock:
            if self._is_current(lane, gen):
                self._invoke(callback, *args)

    def _invoke(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.error("Timer callback %r failed", callback, exc_info=True)


class HighPrecisionTimerService(TimerService):
    """Timer whose countdowns run off a frame loop instead of a fixed-rate timer.

    The loop ticks every ``frame_interval_ms`` (about 60 per second) but only
    calls back when ``high_precision_throttle_ms`` has passed since the last
    update, i.e. about 20 updates a second with sub-second progress values.
    """

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(scheduler=scheduler, clock=clock, settings=settings)
        self._frames = _Lane("frames")
        self._last_update_ms: int | None = None

    def start_high_precision_countdown(self, callback: ProgressCallback, period: int = DEFAULT_PERIOD) -> None:
        """Call ``callback(remaining_seconds, progress_percent)`` from the frame loop."""
        _check_period(period)
        lane = self._frames
        with self._lock:
            self._cancel(lane)
            gen = self._activate(lane)
            self._last_update_ms = self._now_ms()
        frame_s = self.settings.frame_interval_ms / 1000
        throttle = self.settings.high_precision_throttle_ms

        self._invoke(callback, self.get_time_remaining(period), self.get_progress_percentage(period))

        def frame() -> None:
            if not self._begin_fire(lane, gen):
                return
            now = self._now_ms()
            last = self._last_update_ms
            if last is None or now - last >= throttle or now < last:
                self._last_update_ms = now
                self._invoke_current(
                    lane, gen, callback, self.get_time_remaining(period), self.get_progress_percentage(period)
                )
            self._arm(lane, gen, frame, lambda: frame_s)
            self._revive_stalled()

        self._arm(lane, gen, frame, lambda: frame_s)

    def start_countdown(self, callback: CountdownCallback, period: int = DEFAULT_PERIOD) -> None:
        with self._lock:
            self._cancel(self._countdown)
        self.start_high_precision_countdown(lambda remaining, _progress: callback(remaining), period)

    def stop_high_precision_countdown(self) -> None:
        with self._lock:
            self._cancel(self._frames)
            self._last_update_ms = None

    def stop_countdown(self) -> None:
        with self._lock:
            super().stop_countdown()
            self.stop_high_precision_countdown()

    def _lanes(self) -> tuple[_Lane, ...]:
        return (*super()._lanes(), self._frames)


def _check_period(period: int) -> int:
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    return period
