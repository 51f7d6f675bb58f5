"""
Delayed-task scheduling for the bot.

``Scheduler`` runs callbacks on the asyncio event loop. ``VirtualScheduler``
keeps the same interface on a manual clock so the cycle state machine can be
stepped through deterministically.
"""

import asyncio
import heapq
import itertools
from typing import Callable


class Scheduler:
    """Thin wrapper over the running event loop's timer facilities."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable, *args):
        return asyncio.get_running_loop().call_later(delay, callback, *args)

    def spawn(self, coro, name: str | None = None) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro, name=name)


class VirtualTimer:
    def __init__(self, when: float, callback: Callable, args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """Manual clock: timers fire only inside ``advance``."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[tuple[float, int, VirtualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable, *args) -> VirtualTimer:
        timer = VirtualTimer(self._now + max(delay, 0.0), callback, args)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled())

    def advance(self, seconds: float):
        """Move the clock forward, firing due timers in order (including ones
        scheduled by callbacks within the window)."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, timer = heapq.heappop(self._queue)
            if timer.cancelled():
                continue
            self._now = when
            timer.callback(*timer.args)
        self._now = target
