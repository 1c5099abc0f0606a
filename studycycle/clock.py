"""
Absolute-deadline countdown used by the player.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

LOG = logging.getLogger(__name__)

MonotonicCallable = Callable[[], int]

US_PER_SECOND = 1_000_000
DEFAULT_TICK_INTERVAL = 0.25


def default_monotonic() -> int:
    return time.monotonic_ns() // 1000


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """
    Schedule callbacks on an asyncio event loop.

    The loop is resolved lazily so the scheduler can be created before the
    server starts its loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _resolve_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._resolve_loop().call_later(max(0.0, float(delay)), callback)


class CountdownClock:
    """
    Countdown that derives the remaining time from a stored deadline.

    ``arm()`` fixes the deadline once; every tick recomputes the remaining
    seconds from that deadline and the monotonic clock, so late or skipped
    ticks snap to the correct value instead of accumulating drift.
    ``on_expire`` fires at most once per ``arm()``.
    """

    def __init__(
        self,
        *,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        monotonic: Optional[MonotonicCallable] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.tick_interval = max(0.01, float(tick_interval))
        self._monotonic: MonotonicCallable = monotonic if monotonic is not None else default_monotonic
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()

        self._armed = False
        self._expired = False
        self._generation = 0
        self._deadline_us: Optional[int] = None
        self._remaining = 0
        self._handle: Optional[TimerHandle] = None

    # ------------------------------------------------------------------ state

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def deadline_us(self) -> Optional[int]:
        return self._deadline_us

    # ---------------------------------------------------------------- control

    def arm(self, remaining_seconds: int) -> None:
        self._cancel_handle()
        self._generation += 1
        self._remaining = max(0, int(remaining_seconds))
        self._deadline_us = self._monotonic() + self._remaining * US_PER_SECOND
        self._armed = True
        self._expired = False
        LOG.debug("Clock armed for %ss (generation %s)", self._remaining, self._generation)
        self._schedule(self._generation)

    def disarm(self) -> None:
        if not self._armed and self._handle is None:
            return
        self._cancel_handle()
        self._armed = False
        self._deadline_us = None
        # invalidate callbacks already queued by the scheduler
        self._generation += 1

    def tick(self) -> int:
        """
        Recompute the remaining seconds from the deadline.

        Outside of an armed period this only returns the last known value.
        """

        if not self._armed or self._deadline_us is None:
            return self._remaining
        delta = self._deadline_us - self._monotonic()
        self._remaining = max(0, delta // US_PER_SECOND)
        if self.on_tick is not None:
            self.on_tick(self._remaining)
        if self._remaining == 0 and self._armed:
            self.disarm()
            if not self._expired:
                self._expired = True
                if self.on_expire is not None:
                    self.on_expire()
        return self._remaining

    # ---------------------------------------------------------------- helpers

    def _schedule(self, generation: int) -> None:
        self._handle = self._scheduler.call_later(self.tick_interval, lambda: self._on_timer(generation))

    def _on_timer(self, generation: int) -> None:
        if generation != self._generation or not self._armed:
            return
        self._handle = None
        self.tick()
        if self._armed and generation == self._generation:
            self._schedule(generation)

    def _cancel_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()


__all__ = [
    "AsyncioScheduler",
    "CountdownClock",
    "MonotonicCallable",
    "Scheduler",
    "TimerHandle",
    "US_PER_SECOND",
    "default_monotonic",
]
