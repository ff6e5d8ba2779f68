"""Reconciliation driver: keeps a live timer in step with the wall clock.

The driver owns the one mutable slot holding the current
:class:`~retrotimer.core.timer.TimerState`.  User commands and the periodic
tick both run on the event-loop thread and replace the slot with whatever
the pure engine returns, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from retrotimer.core import timer
from retrotimer.core.timer import TimerState, TimerStatus
from retrotimer.notify import Notifier, NullNotifier

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 1.0
DEFAULT_KICK_DELAY = 0.1

StateListener = Callable[[TimerState], None]


def _now() -> datetime:
    return datetime.now().astimezone()


class TimerDriver:
    """Tick a timer, react to activity signals, and announce completion once.

    *on_change* receives every new state.  *notifier* is told when the timer
    completes naturally, through :meth:`tick`, :meth:`on_active` or
    :meth:`complete`; an abandoned timer (:meth:`stop`) is not announced.
    """

    def __init__(
        self,
        state: TimerState,
        *,
        notifier: Notifier | None = None,
        on_change: StateListener | None = None,
        clock: Callable[[], datetime] | None = None,
        interval: float = DEFAULT_TICK_INTERVAL,
        kick_delay: float = DEFAULT_KICK_DELAY,
        last_active_time: datetime | None = None,
    ) -> None:
        self._state = state
        self._notifier: Notifier = notifier if notifier is not None else NullNotifier()
        self._on_change = on_change
        self._clock = clock if clock is not None else _now
        self._interval = interval
        self._kick_delay = kick_delay
        self._last_active_time = last_active_time
        self._announced = state.status == TimerStatus.COMPLETED
        self._tick_task: asyncio.Task | None = None
        self._kick_handle: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def last_active_time(self) -> datetime | None:
        return self._last_active_time

    @property
    def is_ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # -- transitions ---------------------------------------------------------

    def start(self, now: datetime | None = None) -> TimerState:
        return self._begin_running(timer.start, now)

    def resume(self, now: datetime | None = None) -> TimerState:
        return self._begin_running(timer.resume, now)

    def pause(self, now: datetime | None = None) -> TimerState:
        self._publish(timer.pause(self._state, now or self._clock()))
        return self._state

    def stop(self, now: datetime | None = None) -> TimerState:
        self._publish(timer.stop(self._state, now or self._clock()), announce=False)
        return self._state

    def complete(self, now: datetime | None = None) -> TimerState:
        self._publish(timer.complete(self._state, now or self._clock()))
        return self._state

    def reset(self) -> TimerState:
        self._publish(timer.reset(self._state))
        return self._state

    def set_task(self, task: str) -> TimerState:
        self._publish(timer.set_task(self._state, task))
        return self._state

    # -- reconciliation ------------------------------------------------------

    def tick(self, now: datetime | None = None) -> TimerState:
        """Sync a running timer with *now*; other statuses are left alone."""
        if self._state.status != TimerStatus.RUNNING:
            return self._state

        now = now or self._clock()
        if timer.is_large_gap(now, self._last_active_time):
            logger.info("Inactive since %s, reconciling timer", self._last_active_time.isoformat())
        self._publish(timer.sync(self._state, now, self._last_active_time))
        return self._state

    def on_inactive(self, now: datetime | None = None) -> None:
        """Remember when the owner went to the background."""
        self._last_active_time = now or self._clock()
        logger.debug("Went inactive at %s", self._last_active_time.isoformat())

    def on_active(self, now: datetime | None = None) -> TimerState:
        """Reconcile right away instead of waiting for the next tick."""
        return self.tick(now)

    async def run(self) -> None:
        """Tick every ``interval`` seconds until the timer completes or the driver closes."""
        while not self._closed and self._state.status != TimerStatus.COMPLETED:
            await asyncio.sleep(self._interval)
            if self._closed:
                break
            self.tick()

    def start_ticking(self) -> asyncio.Task:
        """Schedule :meth:`run` on the running loop and return its task."""
        if not self.is_ticking:
            self._closed = False
            self._tick_task = asyncio.get_running_loop().create_task(self.run())
        return self._tick_task

    def close(self) -> None:
        """Stop ticking and drop any pending out-of-band sync."""
        self._closed = True
        self._cancel_kick()
        if self.is_ticking:
            self._tick_task.cancel()

    async def aclose(self) -> None:
        task = self._tick_task
        self.close()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> TimerDriver:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- private helpers -----------------------------------------------------

    def _begin_running(self, transition, now: datetime | None) -> TimerState:
        now = now or self._clock()
        new_state = transition(self._state, now)
        if new_state is not self._state:
            self._last_active_time = now
            self._publish(new_state)
            self._schedule_ticks()
        return self._state

    def _publish(self, new_state: TimerState, announce: bool = True) -> None:
        if new_state is self._state:
            return
        self._state = new_state
        if self._on_change is not None:
            self._on_change(new_state)

        if new_state.status != TimerStatus.COMPLETED:
            self._announced = False
            return

        self._cancel_kick()
        if self.is_ticking and self._tick_task is not _current_task():
            self._tick_task.cancel()
        if announce and not self._announced:
            logger.info("Timer for %r completed", new_state.task)
            self._notifier.notify_completion(new_state.task)
        self._announced = True

    def _schedule_ticks(self) -> None:
        """Sync once shortly after a start or resume and keep the tick loop alive.

        The loop ends when a timer completes, so the next start restarts it.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._closed:
            return
        self._cancel_kick()
        self._kick_handle = loop.call_later(self._kick_delay, self.tick)
        if not self.is_ticking:
            self.start_ticking()

    def _cancel_kick(self) -> None:
        if self._kick_handle is not None:
            self._kick_handle.cancel()
            self._kick_handle = None


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
