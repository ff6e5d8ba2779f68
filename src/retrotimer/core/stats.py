"""Filtering, sorting and statistics over collections of sessions.

Every function is a pure transform: inputs are never mutated and a new list
is returned.  Dates are compared as ``YYYY-MM-DD`` strings, which order
correctly because the format is fixed-width.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from retrotimer.core.session import TimerSession

ASC = "asc"
DESC = "desc"

_SORT_FIELDS = ("start_time", "end_time", "duration")
_CLOCK_FORMAT = "%H:%M:%S"


@dataclass(frozen=True)
class SessionFilter:
    date: str | None = None
    date_range: tuple[str, str] | None = None


@dataclass(frozen=True)
class SessionSort:
    field: str = "start_time"
    direction: str = ASC

    def __post_init__(self) -> None:
        if self.field not in _SORT_FIELDS:
            raise ValueError(f"cannot sort sessions by {self.field!r}")
        if self.direction not in (ASC, DESC):
            raise ValueError(f"sort direction must be {ASC!r} or {DESC!r}, got {self.direction!r}")


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int
    total_time: int
    average_time: float
    longest_session: TimerSession | None
    shortest_session: TimerSession | None


@dataclass(frozen=True)
class DailyStats:
    date: str
    total_sessions: int
    total_time: int
    average_time: float
    longest_session: TimerSession | None
    shortest_session: TimerSession | None
    first_session_time: str | None
    last_session_time: str | None


@dataclass(frozen=True)
class SessionGroup:
    """Sessions sharing one task label."""

    task: str
    sessions: list[TimerSession]
    total_duration: int
    count: int


# -- filtering ----------------------------------------------------------------


def filter_by_date(sessions: Iterable[TimerSession], date: str) -> list[TimerSession]:
    return [s for s in sessions if s.date == date]


def filter_by_date_range(sessions: Iterable[TimerSession], start: str, end: str) -> list[TimerSession]:
    """Sessions dated between *start* and *end*, both inclusive."""
    return [s for s in sessions if start <= s.date <= end]


def filter_sessions(sessions: Iterable[TimerSession], session_filter: SessionFilter) -> list[TimerSession]:
    filtered = list(sessions)
    if session_filter.date:
        filtered = filter_by_date(filtered, session_filter.date)
    if session_filter.date_range:
        filtered = filter_by_date_range(filtered, *session_filter.date_range)
    return filtered


def search(sessions: Sequence[TimerSession], query: str) -> Sequence[TimerSession]:
    """Case-insensitive substring search over the task and reflection fields.

    A blank *query* returns *sessions* itself.
    """
    if not query.strip():
        return sessions

    needle = query.lower()
    return [
        s
        for s in sessions
        if needle in s.task.lower()
        or needle in s.result.lower()
        or needle in s.distractions.lower()
        or needle in s.thoughts.lower()
    ]


# -- sorting ------------------------------------------------------------------


def sort_by_start_time(sessions: Iterable[TimerSession], direction: str = ASC) -> list[TimerSession]:
    return sorted(sessions, key=lambda s: s.start_time, reverse=direction == DESC)


def sort_by_end_time(sessions: Iterable[TimerSession], direction: str = ASC) -> list[TimerSession]:
    return sorted(sessions, key=lambda s: s.end_time, reverse=direction == DESC)


def sort_by_duration(sessions: Iterable[TimerSession], direction: str = DESC) -> list[TimerSession]:
    """Sort by duration, longest first unless *direction* is ``"asc"``."""
    return sorted(sessions, key=lambda s: s.duration, reverse=direction == DESC)


_SORTERS = {
    "start_time": sort_by_start_time,
    "end_time": sort_by_end_time,
    "duration": sort_by_duration,
}


def sort_sessions(sessions: Iterable[TimerSession], session_sort: SessionSort) -> list[TimerSession]:
    return _SORTERS[session_sort.field](sessions, session_sort.direction)


def process_sessions(
    sessions: Iterable[TimerSession],
    session_filter: SessionFilter | None = None,
    session_sort: SessionSort | None = None,
) -> list[TimerSession]:
    """Apply an optional filter, then an optional sort."""
    processed = list(sessions)
    if session_filter is not None:
        processed = filter_sessions(processed, session_filter)
    if session_sort is not None:
        processed = sort_sessions(processed, session_sort)
    return processed


# -- aggregation --------------------------------------------------------------


def calculate_total_duration(sessions: Iterable[TimerSession]) -> int:
    return sum(s.duration for s in sessions)


def calculate_stats(sessions: Iterable[TimerSession]) -> SessionStats:
    """Summarize *sessions*.

    Empty input yields zeros and ``None`` rather than dividing by zero.  When
    several sessions tie for longest or shortest the earliest one in input
    order wins.
    """
    sessions = list(sessions)
    if not sessions:
        return SessionStats(
            total_sessions=0,
            total_time=0,
            average_time=0,
            longest_session=None,
            shortest_session=None,
        )

    total_time = calculate_total_duration(sessions)
    return SessionStats(
        total_sessions=len(sessions),
        total_time=total_time,
        average_time=total_time / len(sessions),
        longest_session=max(sessions, key=lambda s: s.duration),
        shortest_session=min(sessions, key=lambda s: s.duration),
    )


def calculate_daily_stats(sessions: Iterable[TimerSession], date: str) -> DailyStats:
    """Statistics for the sessions dated *date*.

    ``first_session_time`` is the start of the earliest session and
    ``last_session_time`` the end of the latest-starting one, both as local
    ``HH:MM:SS``.
    """
    daily = filter_by_date(sessions, date)
    stats = calculate_stats(daily)

    first_time = last_time = None
    if daily:
        ordered = sort_by_start_time(daily)
        first_time = _clock_time(ordered[0].start_time)
        last_time = _clock_time(ordered[-1].end_time)

    return DailyStats(
        date=date,
        total_sessions=stats.total_sessions,
        total_time=stats.total_time,
        average_time=stats.average_time,
        longest_session=stats.longest_session,
        shortest_session=stats.shortest_session,
        first_session_time=first_time,
        last_session_time=last_time,
    )


def group_by_task(sessions: Iterable[TimerSession]) -> list[SessionGroup]:
    """Partition *sessions* by exact task label, in order of first appearance.

    Labels are compared verbatim: no case folding or trimming.
    """
    grouped: dict[str, list[TimerSession]] = {}
    for session in sessions:
        grouped.setdefault(session.task, []).append(session)

    return [
        SessionGroup(
            task=task,
            sessions=members,
            total_duration=calculate_total_duration(members),
            count=len(members),
        )
        for task, members in grouped.items()
    ]


def _clock_time(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime(_CLOCK_FORMAT)
