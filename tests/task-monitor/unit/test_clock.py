"""
Unit tests for the timer substrate (ManualScheduler and AsyncioScheduler).
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from claude_task_monitor.clock import AsyncioScheduler, ManualScheduler


class TestManualScheduler:
    """Virtual clock behavior."""

    def test_naive_start_is_utc(self):
        scheduler = ManualScheduler(start=datetime(2025, 1, 1))
        assert scheduler.now().tzinfo == timezone.utc

    def test_timer_fires_only_when_due(self, scheduler):
        fired = []
        scheduler.call_later(100, fired.append, "a")

        scheduler.advance(99)
        assert fired == []

        scheduler.advance(1)
        assert fired == ["a"]

        scheduler.advance(1000)
        assert fired == ["a"]

    def test_cancelled_timer_never_fires(self, scheduler):
        fired = []
        handle = scheduler.call_later(100, fired.append, "a")
        handle.cancel()

        scheduler.advance(200)
        assert fired == []
        assert scheduler.pending() == 0

    def test_timers_fire_in_due_order_with_stable_ties(self, scheduler):
        fired = []
        scheduler.call_later(200, fired.append, "late")
        scheduler.call_later(100, fired.append, "first")
        scheduler.call_later(100, fired.append, "second")

        scheduler.advance(500)
        assert fired == ["first", "second", "late"]

    def test_now_reads_due_time_inside_callback(self, scheduler):
        seen = []
        scheduler.call_later(250, lambda: seen.append(scheduler.now()))
        start = scheduler.now()

        scheduler.advance(1000)

        assert seen == [start + timedelta(milliseconds=250)]
        assert scheduler.now() == start + timedelta(milliseconds=1000)

    def test_callback_can_arm_timer_within_same_advance(self, scheduler):
        fired = []

        def first():
            fired.append("first")
            scheduler.call_later(50, fired.append, "chained")

        scheduler.call_later(100, first)
        scheduler.advance(200)

        assert fired == ["first", "chained"]

    def test_call_every_repeats_until_cancelled(self, scheduler):
        ticks = []
        handle = scheduler.call_every(100, lambda: ticks.append(scheduler.elapsed_ms))

        scheduler.advance(350)
        assert ticks == [100, 200, 300]

        handle.cancel()
        scheduler.advance(1000)
        assert ticks == [100, 200, 300]

    def test_interval_can_cancel_itself(self, scheduler):
        ticks = []
        handles = []

        def tick():
            ticks.append(scheduler.elapsed_ms)
            if len(ticks) == 2:
                handles[0].cancel()

        handles.append(scheduler.call_every(100, tick))
        scheduler.advance(1000)

        assert ticks == [100, 200]
        assert scheduler.pending() == 0

    def test_call_every_rejects_non_positive_interval(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.call_every(0, lambda: None)

    def test_advance_rejects_negative_delta(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.advance(-1)

    def test_advance_to_past_is_noop(self, scheduler):
        scheduler.advance(500)
        scheduler.advance_to(scheduler.now() - timedelta(seconds=1))
        assert scheduler.elapsed_ms == 500

    def test_advance_to_absolute_time(self, scheduler):
        fired = []
        scheduler.call_later(1500, fired.append, "x")

        scheduler.advance_to(scheduler.now() + timedelta(seconds=2))

        assert fired == ["x"]
        assert scheduler.elapsed_ms == 2000


class TestAsyncioScheduler:
    """Real-time scheduler on the running loop."""

    def test_now_is_aware_utc(self):
        assert AsyncioScheduler().now().tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_call_later_fires_on_loop(self):
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()

        scheduler.call_later(10, fired.set)

        await asyncio.wait_for(fired.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancelled_call_later_does_not_fire(self):
        scheduler = AsyncioScheduler()
        fired = []

        handle = scheduler.call_later(10, fired.append, "x")
        handle.cancel()
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_call_every_repeats_and_cancels(self):
        scheduler = AsyncioScheduler()
        ticks = []
        done = asyncio.Event()
        handles = []

        def tick():
            ticks.append(1)
            if len(ticks) == 3:
                handles[0].cancel()
                done.set()

        handles.append(scheduler.call_every(5, tick))
        await asyncio.wait_for(done.wait(), timeout=1.0)
        await asyncio.sleep(0.05)

        assert len(ticks) == 3
