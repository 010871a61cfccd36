"""
Timer scheduling for single-threaded playback.

The replay engine never sleeps; it asks a :class:`Scheduler` to call it back
after a delay and cancels the pending handle to pause. Two implementations
ship here:

- :class:`ManualScheduler`: a virtual clock advanced explicitly. Used by tests
  and by the CLI ``--instant`` mode, where playback should complete in one go.
- :class:`AsyncioScheduler`: wraps ``loop.call_later`` for real-time playback
  inside a running event loop.

Both run callbacks on the caller's thread; there is no parallelism.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol


class TimerHandle(Protocol):
    """Opaque handle returned by :meth:`Scheduler.call_later`."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Minimal timer interface consumed by the replay engine."""

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


@dataclass(order=True)
class _ManualTimer:
    due_ms: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler driven by a virtual millisecond clock.

    Timers with equal due time fire in registration order.
    """

    def __init__(self) -> None:
        self.now_ms: float = 0.0
        self._queue: list[_ManualTimer] = []
        self._seq = itertools.count()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(
            due_ms=self.now_ms + max(0.0, float(delay_ms)),
            seq=next(self._seq),
            callback=callback,
        )
        heapq.heappush(self._queue, timer)
        return timer

    @property
    def pending(self) -> int:
        """Number of timers that are scheduled and not cancelled."""
        return sum(1 for t in self._queue if not t.cancelled)

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward by ``delta_ms``, firing every timer that falls due.

        Returns the number of callbacks invoked.
        """
        target = self.now_ms + max(0.0, float(delta_ms))
        fired = 0
        while self._queue and self._queue[0].due_ms <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now_ms = timer.due_ms
            timer.callback()
            fired += 1
        self.now_ms = target
        return fired

    def run_until_idle(self, max_steps: int = 100_000) -> int:
        """Fire timers in due order until none remain.

        Raises
        ------
        RuntimeError
            If more than ``max_steps`` callbacks fire (runaway rescheduling).
        """
        fired = 0
        while self._queue:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now_ms = max(self.now_ms, timer.due_ms)
            timer.callback()
            fired += 1
            if fired > max_steps:
                raise RuntimeError("ManualScheduler exceeded max_steps; timers keep rescheduling")
        return fired


class AsyncioScheduler:
    """Real-time scheduler backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(max(0.0, delay_ms) / 1000.0, callback)


__all__ = ["Scheduler", "TimerHandle", "ManualScheduler", "AsyncioScheduler"]
