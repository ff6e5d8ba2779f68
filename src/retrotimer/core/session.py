"""Session records derived from finished timers."""

from __future__ import annotations

import math
import re
import secrets
import time
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_TIME_FIELDS = frozenset({"start_time", "end_time"})


@dataclass(frozen=True)
class ReflectionData:
    """What the user wrote down after a timer finished."""

    result: str = ""
    distractions: str = ""
    thoughts: str = ""


@dataclass(frozen=True)
class TimerSession:
    """An immutable record of one finished timer."""

    id: str
    task: str
    start_time: datetime
    end_time: datetime
    duration: int
    result: str
    distractions: str
    thoughts: str
    date: str


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: list[str]


_SESSION_FIELDS = frozenset(f.name for f in fields(TimerSession))


def _to_base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            break
    return "".join(reversed(digits))


def generate_id() -> str:
    """Return a process-unique id: a base-36 millisecond timestamp plus random suffix."""
    return _to_base36(time.time_ns() // 1_000_000) + _to_base36(secrets.randbits(52))


def compute_duration(start_time: datetime, end_time: datetime) -> int:
    """Whole seconds from *start_time* to *end_time*."""
    return math.floor((end_time - start_time).total_seconds())


def session_date(moment: datetime) -> str:
    """Return the local calendar date of *moment* as ``YYYY-MM-DD``."""
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date().isoformat()


def create_session(
    task: str,
    start_time: datetime,
    end_time: datetime,
    reflection: ReflectionData,
    date: str,
) -> TimerSession:
    """Build a session record.

    *start_time* is expected to precede *end_time*; this is not checked here,
    use :func:`validate_session` for that.
    """
    return TimerSession(
        id=generate_id(),
        task=task,
        start_time=start_time,
        end_time=end_time,
        duration=compute_duration(start_time, end_time),
        result=reflection.result,
        distractions=reflection.distractions,
        thoughts=reflection.thoughts,
        date=date,
    )


def update_session(session: TimerSession, updates: Mapping[str, Any]) -> TimerSession:
    """Return a copy of *session* with *updates* merged in.

    ``duration`` is recomputed whenever ``start_time`` or ``end_time`` is
    among the updated fields.
    """
    if "id" in updates:
        raise ValueError("session id cannot be updated")
    unknown = set(updates) - _SESSION_FIELDS
    if unknown:
        raise TypeError(f"unknown session fields: {', '.join(sorted(unknown))}")

    updated = replace(session, **updates)
    if _TIME_FIELDS & set(updates):
        updated = replace(updated, duration=compute_duration(updated.start_time, updated.end_time))
    return updated


def update_session_in_list(
    sessions: Iterable[TimerSession], session_id: str, updates: Mapping[str, Any]
) -> list[TimerSession]:
    """Apply *updates* to the session with *session_id*, leaving the others as-is."""
    return [update_session(s, updates) if s.id == session_id else s for s in sessions]


def remove_session_from_list(sessions: Iterable[TimerSession], session_id: str) -> list[TimerSession]:
    return [s for s in sessions if s.id != session_id]


def validate_session(session: TimerSession) -> ValidationResult:
    """Check *session* against the record invariants without raising."""
    errors: list[str] = []

    if not session.id:
        errors.append("session id is required")

    if not session.task.strip():
        errors.append("task is required")

    start_ok = isinstance(session.start_time, datetime)
    end_ok = isinstance(session.end_time, datetime)
    if not start_ok:
        errors.append("a valid start_time is required")
    if not end_ok:
        errors.append("a valid end_time is required")

    if session.duration < 0:
        errors.append("duration must not be negative")

    if start_ok and end_ok and session.start_time >= session.end_time:
        errors.append("start_time must be before end_time")

    if not session.date or not _DATE_PATTERN.fullmatch(session.date):
        errors.append("date must be formatted as YYYY-MM-DD")

    return ValidationResult(is_valid=not errors, errors=errors)
