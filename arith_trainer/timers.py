"""Clock-driven scheduling for the session engine.

Nothing here sleeps or spawns threads.  The host loop calls
:meth:`Scheduler.run_due` once per frame and every callback whose due time has
passed runs to completion, in due order, on the caller's thread.  Time comes
from an injected :class:`Clock`, so tests advance a fake
clock and pump the scheduler to get exact, repeatable tick sequences.

:class:`Ticker` wraps a recurring task behind ``start_ticking``/``stop``.
:class:`TimerService` owns the two tickers of a drill session: the session
timer and the question timer.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> float:
        """Monotonic seconds."""
        ...


class RealClock:
    """Live clock backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()


class ScheduledTask:
    """Handle for a pending callback.  ``cancel()`` is idempotent."""

    __slots__ = ("due_s", "interval_s", "callback", "_cancelled")

    def __init__(self, due_s: float, interval_s: float | None, callback: Callable[[], None]) -> None:
        self.due_s = float(due_s)
        self.interval_s = interval_s
        self.callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Scheduler:
    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._queue: list[tuple[float, int, ScheduledTask]] = []
        self._seq = itertools.count()

    @property
    def clock(self) -> Clock:
        return self._clock

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> ScheduledTask:
        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")
        task = ScheduledTask(self._clock.now() + float(delay_s), None, callback)
        self._push(task)
        return task

    def call_every(self, interval_s: float, callback: Callable[[], None]) -> ScheduledTask:
        """Run ``callback`` every ``interval_s`` seconds, first after one interval."""
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        task = ScheduledTask(self._clock.now() + float(interval_s), float(interval_s), callback)
        self._push(task)
        return task

    def pending_count(self) -> int:
        return sum(1 for _, _, task in self._queue if not task.cancelled)

    def run_due(self) -> int:
        """Fire every callback that is due.  Returns how many ran.

        A recurring task that is several intervals behind fires once per
        missed interval.  Callbacks may schedule or cancel other tasks; a
        task cancelled by an earlier callback in the same pass does not run.
        """
        now = self._clock.now()
        fired = 0
        while self._queue and self._queue[0][0] <= now:
            _, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            if task.interval_s is not None:
                task.due_s += task.interval_s
                self._push(task)
            else:
                task.cancel()
            task.callback()
            fired += 1
        return fired

    def _push(self, task: ScheduledTask) -> None:
        heapq.heappush(self._queue, (task.due_s, next(self._seq), task))


class Ticker:
    """A single restartable tick stream.

    ``start_ticking`` replaces any stream already running, so rapid
    start/stop toggling never leaves two streams alive.
    """

    def __init__(self, scheduler: Scheduler, *, interval_s: float = 1.0, name: str = "ticker") -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._scheduler = scheduler
        self._interval_s = float(interval_s)
        self._name = name
        self._task: ScheduledTask | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.cancelled

    def start_ticking(self, on_tick: Callable[[], None]) -> None:
        self.stop()
        self._task = self._scheduler.call_every(self._interval_s, on_tick)
        logger.debug("%s started", self._name)

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.cancelled:
            task.cancel()
            logger.debug("%s stopped", self._name)


class TimerService:
    """Session and question elapsed-second counters.

    Both counters only move while ticking.  ``on_change`` fires after every
    tick so the owner can persist the new values.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        interval_s: float = 1.0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._session = Ticker(scheduler, interval_s=interval_s, name="session timer")
        self._question = Ticker(scheduler, interval_s=interval_s, name="question timer")
        self._on_change = on_change
        self.session_elapsed_s = 0
        self.question_elapsed_s = 0

    @property
    def running(self) -> bool:
        return self._session.running or self._question.running

    def start(self, *, session_elapsed_s: int = 0) -> None:
        """(Re)start both streams; the session counter resumes from ``session_elapsed_s``."""
        self.session_elapsed_s = max(0, int(session_elapsed_s))
        self._session.start_ticking(self._tick_session)
        self.reset_question()

    def reset_question(self) -> None:
        """Zero the question counter and restart its stream if the service is live."""
        self.question_elapsed_s = 0
        if self._session.running:
            self._question.start_ticking(self._tick_question)

    def stop(self) -> None:
        self._session.stop()
        self._question.stop()

    def _tick_session(self) -> None:
        self.session_elapsed_s += 1
        self._changed()

    def _tick_question(self) -> None:
        self.question_elapsed_s += 1
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()


def format_elapsed(seconds: int) -> str:
    """``125`` -> ``"2:05"``."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"
