from __future__ import annotations

import heapq
from typing import Callable, List, Tuple

import pytest


class FakeHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTime:
    """Monotonic clock plus scheduler that only moves when told to."""

    def __init__(self) -> None:
        self.now_us = 0
        self._seq = 0
        self._queue: List[Tuple[int, int, FakeHandle, Callable[[], None]]] = []

    def monotonic(self) -> int:
        return self.now_us

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle()
        self._seq += 1
        due = self.now_us + int(round(float(delay) * 1_000_000))
        heapq.heappush(self._queue, (due, self._seq, handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        """Move time forward, running every callback that falls due on the way."""

        target = self.now_us + int(round(seconds * 1_000_000))
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now_us = max(self.now_us, due)
            callback()
        self.now_us = target

    def jump(self, seconds: float) -> None:
        """Move time forward without delivering any scheduled callback."""

        self.now_us += int(round(seconds * 1_000_000))


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()
