"""Timer controller: the single live timer, persisted between invocations."""

from __future__ import annotations

import fcntl
import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path

from retrotimer.core import timer
from retrotimer.core.session import (
    ReflectionData,
    TimerSession,
    create_session,
    session_date,
    validate_session,
)
from retrotimer.core.timer import TimerState, TimerStatus, create_timer_state, format_time
from retrotimer.notify import Notifier, NullNotifier
from retrotimer.storage import DEFAULT_DATA_DIR, SessionRepository, StorageError

logger = logging.getLogger(__name__)

_STATE_FILE = "timer.json"

_MIN_MINUTES = 1
_MAX_MINUTES = 60
DEFAULT_MINUTES = timer.DEFAULT_INITIAL_TIME // 60


class InvalidStateError(Exception):
    """Raised when a command has no effect from the current timer status."""


def _now() -> datetime:
    return datetime.now().astimezone()


def _dump_time(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment is not None else None


def _load_time(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


class TimerController:
    """Drives the engine for one user and persists the result.

    State is written to ``<data_dir>/timer.json`` after every command so the
    timer survives across terminal invocations.  Each command first
    reconciles the stored state with the wall clock, using the time of the
    previous command as the last-known-active moment.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        repository: SessionRepository | None = None,
        notifier: Notifier | None = None,
        clock=None,
    ) -> None:
        self._data_dir: Path = data_dir if data_dir is not None else DEFAULT_DATA_DIR
        self._repository = repository if repository is not None else SessionRepository(self._data_dir)
        self._notifier: Notifier = notifier if notifier is not None else NullNotifier()
        self._clock = clock if clock is not None else _now

        self._state: TimerState = create_timer_state()
        self._started_at: datetime | None = None
        self._ended_at: datetime | None = None
        self._last_active_time: datetime | None = None
        self._load()

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def last_active_time(self) -> datetime | None:
        return self._last_active_time

    @property
    def repository(self) -> SessionRepository:
        return self._repository

    # -- public API ----------------------------------------------------------

    def start(self, task: str = "", minutes: int | None = None) -> str:
        """Start a new timer, or continue a paused one.

        A new timer needs a non-blank *task*; *minutes* (1--60) defaults to
        ten.  From PAUSED the remaining time is kept, *minutes* must be left
        unset and *task*, when given, relabels the timer.
        """
        now = self._reconcile()
        state = self._state

        if state.status == TimerStatus.IDLE:
            if not task.strip():
                raise ValueError("task must not be empty")
            if minutes is None:
                minutes = DEFAULT_MINUTES
            self._check_minutes(minutes)
            state = create_timer_state(minutes * 60, task.strip())
        elif state.status == TimerStatus.PAUSED and minutes is not None:
            raise ValueError("minutes cannot be changed on a paused timer; run 'reset' to start over")
        elif task.strip():
            state = timer.set_task(state, task.strip())

        new_state = timer.start(state, now)
        if new_state is state:
            raise InvalidStateError(self._invalid("start", "run 'complete' or 'reset' first"))

        if self._state.status == TimerStatus.IDLE:
            self._started_at = now
            self._ended_at = None
            message = f'Timer started: "{new_state.task}" for {minutes} minutes'
        else:
            message = f"Timer resumed: {format_time(new_state.time_left)} remaining"
        self._commit(new_state, now)
        return message

    def pause(self) -> str:
        now = self._reconcile()
        new_state = self._apply("pause", timer.pause(self._state, now))
        self._commit(new_state, now)
        return f"Timer paused at {format_time(new_state.time_left)} remaining"

    def resume(self) -> str:
        now = self._reconcile()
        new_state = self._apply("resume", timer.resume(self._state, now))
        self._commit(new_state, now)
        return f"Timer resumed: {format_time(new_state.time_left)} remaining"

    def stop(self) -> str:
        """Abandon the timer; it still needs a reflection via :meth:`complete`."""
        now = self._reconcile()
        new_state = self._apply("stop", timer.stop(self._state, now))
        self._ended_at = now
        self._commit(new_state, now)
        return f'Timer stopped: "{new_state.task}"'

    def reset(self) -> str:
        now = self._clock()
        self._started_at = None
        self._ended_at = None
        self._commit(timer.reset(self._state), now)
        return "Timer reset"

    def status(self) -> tuple[str, int]:
        """Return ``(message, exit_code)``."""
        now = self._reconcile()
        self._commit(self._state, now)
        state = self._state
        if state.status == TimerStatus.RUNNING:
            return f"{format_time(state.time_left)} remaining: {state.task}", 0
        if state.status == TimerStatus.PAUSED:
            return f"{format_time(state.time_left)} remaining (paused): {state.task}", 0
        if state.status == TimerStatus.COMPLETED:
            return f'Timer completed: "{state.task}" (run complete to record it)', 1
        return "No active timer", 1

    def complete(self, reflection: ReflectionData) -> TimerSession:
        """Record the finished timer as a session and reset.

        Valid from RUNNING, which finishes the timer now, or from COMPLETED.
        """
        now = self._reconcile()
        if self._state.status == TimerStatus.RUNNING:
            self._state = timer.complete(self._state, now)
            self._ended_at = now
            self._notifier.notify_completion(self._state.task)
        if self._state.status != TimerStatus.COMPLETED:
            raise InvalidStateError(self._invalid("complete"))

        end_time = self._ended_at or now
        start_time = self._started_at or end_time
        session = create_session(
            self._state.task, start_time, end_time, reflection, session_date(end_time)
        )
        result = validate_session(session)
        if not result.is_valid:
            logger.warning("Recording session %s with problems: %s", session.id, "; ".join(result.errors))

        self._repository.save_session(session)
        self._started_at = None
        self._ended_at = None
        self._commit(timer.reset(self._state), now)
        return session

    def record(self, state: TimerState) -> None:
        """Adopt *state* produced by another driver of the same timer and persist it."""
        now = self._clock()
        if state.status == TimerStatus.COMPLETED and self._state.status != TimerStatus.COMPLETED:
            self._ended_at = self._expiry(self._state, now)
        self._commit(state, now)

    # -- private helpers -----------------------------------------------------

    def _invalid(self, method: str, hint: str = "") -> str:
        message = f"{method}() is not valid from {self._state.status.value} state"
        return f"{message}; {hint}" if hint else message

    def _apply(self, method: str, new_state: TimerState) -> TimerState:
        """Raise ``InvalidStateError`` if the engine returned the state unchanged."""
        if new_state is self._state:
            raise InvalidStateError(self._invalid(method))
        return new_state

    def _check_minutes(self, minutes: int) -> None:
        if not isinstance(minutes, int) or isinstance(minutes, bool):
            raise TypeError(f"minutes must be an integer, got {type(minutes).__name__}")
        if not (_MIN_MINUTES <= minutes <= _MAX_MINUTES):
            raise ValueError(
                f"minutes must be between {_MIN_MINUTES} and {_MAX_MINUTES}, got {minutes}"
            )

    def _reconcile(self) -> datetime:
        """Sync the loaded state with the clock and return the current time."""
        now = self._clock()
        previous = self._state
        if timer.is_large_gap(now, self._last_active_time):
            logger.info("Timer idle since %s, reconciling", self._last_active_time.isoformat())

        self._state = timer.sync(previous, now, self._last_active_time)
        if self._state.status == TimerStatus.COMPLETED and previous.status == TimerStatus.RUNNING:
            self._ended_at = self._expiry(previous, now)
            logger.info("Timer for %r completed", self._state.task)
            self._commit(self._state, now)
            self._notifier.notify_completion(self._state.task)
        return now

    @staticmethod
    def _expiry(state: TimerState, now: datetime) -> datetime:
        """The moment a running *state* reached zero, capped at *now*."""
        if state.start_time is None:
            return now
        base = state.time_left_at_start if state.time_left_at_start is not None else state.time_left
        return min(now, state.start_time + timedelta(seconds=base))

    def _commit(self, state: TimerState, now: datetime) -> None:
        self._state = state
        self._last_active_time = now
        self._save()

    # -- persistence ---------------------------------------------------------

    def _save(self) -> None:
        """Write current state to the JSON file with file locking."""
        state = self._state
        data = {
            "status": state.status.value,
            "time_left": state.time_left,
            "initial_time": state.initial_time,
            "start_time": _dump_time(state.start_time),
            "task": state.task,
            "time_left_at_start": state.time_left_at_start,
            "started_at": _dump_time(self._started_at),
            "ended_at": _dump_time(self._ended_at),
            "last_active_time": _dump_time(self._last_active_time),
        }
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(self._data_dir / _STATE_FILE, "w") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                json.dump(data, f)
        except OSError as exc:
            raise StorageError(f"cannot write timer state: {exc}") from exc
        logger.debug("Saved timer state: %s", data)

    def _load(self) -> None:
        """Load state from the JSON file if it exists."""
        path = self._data_dir / _STATE_FILE
        if not path.exists():
            return

        try:
            with open(path) as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
            initial_time = int(data.get("initial_time", timer.DEFAULT_INITIAL_TIME))
            self._state = replace(
                create_timer_state(initial_time, data.get("task", "")),
                status=TimerStatus(data.get("status", "idle")),
                time_left=int(data.get("time_left", initial_time)),
                start_time=_load_time(data.get("start_time")),
                time_left_at_start=data.get("time_left_at_start"),
            )
            self._started_at = _load_time(data.get("started_at"))
            self._ended_at = _load_time(data.get("ended_at"))
            self._last_active_time = _load_time(data.get("last_active_time"))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            raise StorageError(f"cannot read timer state from {path}: {exc}") from exc

        problems = timer.validate(self._state)
        if problems:
            logger.warning("Stored timer state is inconsistent: %s", "; ".join(problems))
