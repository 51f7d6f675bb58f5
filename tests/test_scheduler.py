"""Tests for the virtual clock used to drive the state machine."""

import asyncio

import pytest

from scheduler import Scheduler, VirtualScheduler


def test_timers_fire_in_time_order():
    sched = VirtualScheduler()
    fired = []
    sched.call_later(3, fired.append, "c")
    sched.call_later(1, fired.append, "a")
    sched.call_later(2, fired.append, "b")

    sched.advance(2)
    assert fired == ["a", "b"]
    assert sched.now() == 2
    sched.advance(1)
    assert fired == ["a", "b", "c"]


def test_cancelled_timer_does_not_fire():
    sched = VirtualScheduler()
    fired = []
    handle = sched.call_later(1, fired.append, "x")
    handle.cancel()

    sched.advance(5)
    assert fired == []
    assert sched.pending == 0


def test_timer_scheduled_inside_window_fires():
    sched = VirtualScheduler()
    fired = []

    def first():
        fired.append(sched.now())
        sched.call_later(1, lambda: fired.append(sched.now()))

    sched.call_later(1, first)
    sched.advance(3)

    assert fired == [1, 2]
    assert sched.now() == 3


def test_same_deadline_keeps_submission_order():
    sched = VirtualScheduler()
    fired = []
    for name in "xyz":
        sched.call_later(1, fired.append, name)
    sched.advance(1)
    assert fired == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_real_scheduler_runs_on_event_loop():
    sched = Scheduler()
    done = asyncio.Event()
    sched.call_later(0.01, done.set)

    await asyncio.wait_for(done.wait(), timeout=1)
    assert sched.now() == pytest.approx(asyncio.get_running_loop().time(), abs=0.5)
