"""Timer core: a pure state-machine countdown timer.

Every transition takes the current :class:`TimerState` plus the caller's
notion of "now" and returns a new state.  Nothing here reads the clock,
sleeps, or performs I/O.  A transition that is not valid from the current
status returns the input object unchanged instead of raising, so callers
that care whether anything happened compare the result with ``is``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum


class TimerStatus(Enum):
    """Possible states of the timer."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


DEFAULT_INITIAL_TIME = 600
LARGE_GAP = timedelta(minutes=5)

_VALID_START_STATES = frozenset({TimerStatus.IDLE, TimerStatus.PAUSED})
_VALID_STOP_STATES = frozenset({TimerStatus.RUNNING, TimerStatus.PAUSED})


@dataclass(frozen=True)
class TimerState:
    """Snapshot of a single countdown.

    ``time_left_at_start`` is the remaining time at the moment the current
    running stretch began; elapsed seconds are subtracted from it, not from
    ``initial_time``, so a resumed timer keeps what it had left.  When unset
    the current ``time_left`` is used, and the first recomputation stores it.
    """

    status: TimerStatus
    time_left: int
    initial_time: int
    start_time: datetime | None = None
    task: str = ""
    time_left_at_start: int | None = None


@dataclass(frozen=True)
class TimerCalculation:
    """Display-oriented view of a state at a given moment."""

    time_left: int
    elapsed: int
    progress: float
    is_complete: bool
    formatted_time: str


def create_timer_state(initial_time: int = DEFAULT_INITIAL_TIME, task: str = "") -> TimerState:
    """Return a fresh IDLE state counting down from *initial_time* seconds."""
    return TimerState(
        status=TimerStatus.IDLE,
        time_left=initial_time,
        initial_time=initial_time,
        start_time=None,
        task=task,
        time_left_at_start=initial_time,
    )


# -- time math ----------------------------------------------------------------


def format_time(seconds: int) -> str:
    """Format *seconds* as ``MM:SS``."""
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes:02d}:{rest:02d}"


def format_time_long(seconds: int) -> str:
    """Format *seconds* as ``HH:MM:SS``, or ``MM:SS`` below one hour."""
    hours, rest = divmod(int(seconds), 3600)
    if hours > 0:
        minutes, secs = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return format_time(rest)


def calculate_elapsed_time(start_time: datetime | None, now: datetime) -> int:
    """Return whole seconds between *start_time* and *now*.

    A clock that stepped backwards counts as no time elapsed.
    """
    if start_time is None:
        return 0
    return max(0, math.floor((now - start_time).total_seconds()))


def calculate_time_left(start_time: datetime | None, now: datetime, base: int) -> int:
    """Return ``max(0, base - elapsed)``, or *base* when not started."""
    if start_time is None:
        return base
    return max(0, base - calculate_elapsed_time(start_time, now))


def calculate_progress(elapsed: int, total: int) -> float:
    """Return completion percentage clamped to 0--100."""
    if total <= 0:
        return 0.0
    return min(100.0, max(0.0, elapsed / total * 100))


def is_complete(time_left: int) -> bool:
    return time_left <= 0


def calculate_timer(state: TimerState, now: datetime) -> TimerCalculation:
    """Project *state* onto *now* without changing it."""
    if state.status == TimerStatus.RUNNING:
        time_left = calculate_time_left(state.start_time, now, _run_base(state))
    else:
        time_left = state.time_left
    elapsed = state.initial_time - time_left
    return TimerCalculation(
        time_left=time_left,
        elapsed=elapsed,
        progress=calculate_progress(elapsed, state.initial_time),
        is_complete=is_complete(time_left),
        formatted_time=format_time(time_left),
    )


# -- transitions --------------------------------------------------------------


def start(state: TimerState, now: datetime) -> TimerState:
    """Start the countdown.

    Valid only from IDLE or PAUSED.  From IDLE the full ``initial_time`` is
    loaded; from PAUSED the remaining time carries over.
    """
    if state.status not in _VALID_START_STATES:
        return state

    time_left = state.time_left if state.status == TimerStatus.PAUSED else state.initial_time
    return replace(
        state,
        status=TimerStatus.RUNNING,
        start_time=now,
        time_left=time_left,
        time_left_at_start=time_left,
    )


def pause(state: TimerState, now: datetime) -> TimerState:
    """Freeze the remaining time.  Valid only from RUNNING."""
    if state.status != TimerStatus.RUNNING:
        return state

    return replace(
        state,
        status=TimerStatus.PAUSED,
        time_left=calculate_time_left(state.start_time, now, _run_base(state)),
        start_time=None,
        time_left_at_start=None,
    )


def resume(state: TimerState, now: datetime) -> TimerState:
    """Continue a paused countdown.  Valid only from PAUSED."""
    if state.status != TimerStatus.PAUSED:
        return state

    return replace(
        state,
        status=TimerStatus.RUNNING,
        start_time=now,
        time_left_at_start=state.time_left,
    )


def stop(state: TimerState, now: datetime) -> TimerState:
    """Abandon the countdown.

    Valid from RUNNING or PAUSED.  Forces ``time_left`` to zero without
    accounting for the time actually spent.
    """
    if state.status not in _VALID_STOP_STATES:
        return state

    return replace(state, status=TimerStatus.COMPLETED, time_left=0, start_time=None)


def complete(state: TimerState, now: datetime) -> TimerState:
    """Mark a running countdown as naturally finished.  Valid only from RUNNING."""
    if state.status != TimerStatus.RUNNING:
        return state

    return replace(state, status=TimerStatus.COMPLETED, time_left=0, start_time=None)


def reset(state: TimerState) -> TimerState:
    """Return to IDLE with the full duration and no task.  Always valid."""
    return replace(
        state,
        status=TimerStatus.IDLE,
        time_left=state.initial_time,
        start_time=None,
        task="",
        time_left_at_start=state.initial_time,
    )


def set_task(state: TimerState, task: str) -> TimerState:
    """Relabel the timer.  Not valid once COMPLETED."""
    if state.status == TimerStatus.COMPLETED or state.task == task:
        return state
    return replace(state, task=task)


def sync(state: TimerState, now: datetime, last_active_time: datetime | None = None) -> TimerState:
    """Reconcile a running timer with the wall clock.

    A call whose *last_active_time* is a large gap away from *now* (see
    :func:`is_large_gap`) means the process was probably suspended.  Both
    that case and an ordinary tick recompute the remaining time from
    ``start_time``, so a long suspension lands directly on COMPLETED.
    Calling again with the same *now* returns the state unchanged.
    """
    if state.status != TimerStatus.RUNNING:
        return state

    return _apply_elapsed(state, now)


def is_large_gap(now: datetime, last_active_time: datetime | None) -> bool:
    """Return True when *last_active_time* is more than :data:`LARGE_GAP` from *now*."""
    if last_active_time is None:
        return False
    return abs(now - last_active_time) > LARGE_GAP


def validate(state: TimerState) -> list[str]:
    """Return a description of every invariant *state* violates."""
    errors: list[str] = []

    if state.time_left < 0:
        errors.append("time_left must not be negative")

    if state.time_left > state.initial_time:
        errors.append("time_left must not exceed initial_time")

    if state.status == TimerStatus.RUNNING and state.start_time is None:
        errors.append("a running timer must have a start_time")

    if state.status == TimerStatus.COMPLETED and state.time_left > 0:
        errors.append("a completed timer must have no time left")

    return errors


# -- private helpers ----------------------------------------------------------


def _apply_elapsed(state: TimerState, now: datetime) -> TimerState:
    """Recompute ``time_left`` and complete the timer when it reaches zero."""
    time_left = calculate_time_left(state.start_time, now, _run_base(state))
    if is_complete(time_left):
        return complete(state, now)
    if time_left == state.time_left:
        return state
    return replace(state, time_left=time_left, time_left_at_start=_run_base(state))


def _run_base(state: TimerState) -> int:
    if state.time_left_at_start is None:
        return state.time_left
    return state.time_left_at_start
