"""Timer substrate for the completion engine.

The engine never sleeps or touches the event loop directly. It asks a
scheduler for the current time and for cancelable one-shot and repeating
callbacks. Two schedulers are provided:

    AsyncioScheduler  - real time, backed by loop.call_later
    ManualScheduler   - virtual time, advanced explicitly (tests, replay)

All delays are in milliseconds.
"""

import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Anything with a cancel() method."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Clock and timer capability injected into the engine."""

    def now(self) -> datetime: ...

    def call_later(
        self, delay_ms: float, callback: Callable[..., Any], *args: Any
    ) -> TimerHandle: ...

    def call_every(
        self, interval_ms: float, callback: Callable[..., Any], *args: Any
    ) -> TimerHandle: ...


class _RepeatingHandle:
    """Interval timer on top of loop.call_later.

    Reschedules itself before running the callback so a callback that
    cancels its own interval stops further ticks.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval_sec: float,
        callback: Callable[..., Any],
        args: tuple,
    ) -> None:
        self._loop = loop
        self._interval_sec = interval_sec
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._schedule()

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self._interval_sec, self._tick)

    def _tick(self) -> None:
        if self._cancelled:
            return
        self._schedule()
        self._callback(*self._args)

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(
        self, delay_ms: float, callback: Callable[..., Any], *args: Any
    ) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_ms / 1000.0, callback, *args)

    def call_every(
        self, interval_ms: float, callback: Callable[..., Any], *args: Any
    ) -> _RepeatingHandle:
        return _RepeatingHandle(self.loop, interval_ms / 1000.0, callback, args)


class _ManualTimer:
    def __init__(
        self,
        scheduler: "ManualScheduler",
        due_ms: float,
        interval_ms: Optional[float],
        callback: Callable[..., Any],
        args: tuple,
    ) -> None:
        self.scheduler = scheduler
        self.due_ms = due_ms
        self.interval_ms = interval_ms
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic virtual clock.

    Time only moves when advance() or advance_to() is called. Due timers
    fire in due order (ties in scheduling order), and the clock reads the
    timer's due time while its callback runs, so callbacks that arm new
    timers see a consistent "now".

    Example:
        >>> scheduler = ManualScheduler(start=datetime(2025, 1, 1, tzinfo=timezone.utc))
        >>> fired = []
        >>> _ = scheduler.call_later(100, fired.append, "a")
        >>> scheduler.advance(99); fired
        []
        >>> scheduler.advance(1); fired
        ['a']
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        if start is None:
            start = datetime.now(timezone.utc)
        elif start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._start = start
        self._elapsed_ms = 0.0
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._sequence = itertools.count()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds of virtual time since the scheduler's start."""
        return self._elapsed_ms

    def now(self) -> datetime:
        return self._start + timedelta(milliseconds=self._elapsed_ms)

    def call_later(
        self, delay_ms: float, callback: Callable[..., Any], *args: Any
    ) -> _ManualTimer:
        timer = _ManualTimer(self, self._elapsed_ms + max(delay_ms, 0), None, callback, args)
        self._push(timer)
        return timer

    def call_every(
        self, interval_ms: float, callback: Callable[..., Any], *args: Any
    ) -> _ManualTimer:
        if interval_ms <= 0:
            raise ValueError(f"interval must be positive, got {interval_ms}")
        timer = _ManualTimer(
            self, self._elapsed_ms + interval_ms, interval_ms, callback, args
        )
        self._push(timer)
        return timer

    def pending(self) -> int:
        """Number of armed (not cancelled) timers."""
        return sum(1 for _, _, timer in self._queue if not timer.cancelled)

    def advance(self, delta_ms: float) -> None:
        """Move virtual time forward, firing every timer that comes due."""
        if delta_ms < 0:
            raise ValueError(f"cannot move time backwards by {delta_ms}ms")
        self._run_until(self._elapsed_ms + delta_ms)

    def advance_to(self, when: datetime) -> None:
        """Move virtual time to an absolute instant (no-op if in the past)."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        target_ms = (when - self._start).total_seconds() * 1000.0
        if target_ms > self._elapsed_ms:
            self._run_until(target_ms)

    def _push(self, timer: _ManualTimer) -> None:
        heapq.heappush(self._queue, (timer.due_ms, next(self._sequence), timer))

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)

    def _run_until(self, target_ms: float) -> None:
        while True:
            self._drop_cancelled()
            if not self._queue or self._queue[0][0] > target_ms:
                break
            due_ms, _, timer = heapq.heappop(self._queue)
            self._elapsed_ms = due_ms
            if timer.interval_ms is not None:
                timer.due_ms = due_ms + timer.interval_ms
                self._push(timer)
            else:
                timer.cancelled = True
            timer.callback(*timer.args)
        self._elapsed_ms = max(self._elapsed_ms, target_ms)
