"""Tests for filtering, sorting and aggregating sessions."""

from datetime import datetime, timedelta, timezone

import pytest

from retrotimer.core import stats
from retrotimer.core.session import ReflectionData, TimerSession, create_session
from retrotimer.core.stats import SessionFilter, SessionSort

T0 = datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


def make(
    task: str = "write",
    start: float = 0,
    duration: float = 600,
    date: str = "2025-01-01",
    reflection: ReflectionData = ReflectionData(),
) -> TimerSession:
    start_time = T0 + timedelta(seconds=start)
    return create_session(task, start_time, start_time + timedelta(seconds=duration), reflection, date)


def local_clock(moment: datetime) -> str:
    return moment.astimezone().strftime("%H:%M:%S")


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestFilters:
    def test_filter_by_date(self) -> None:
        first, second = make(date="2025-01-01"), make(date="2025-01-02")
        assert stats.filter_by_date([first, second], "2025-01-02") == [second]

    def test_single_day_range_is_inclusive(self) -> None:
        first, second = make(date="2025-01-01"), make(date="2025-01-02")
        assert stats.filter_by_date_range([first, second], "2025-01-01", "2025-01-01") == [first]

    def test_range_includes_both_ends(self) -> None:
        sessions = [make(date=d) for d in ("2024-12-31", "2025-01-01", "2025-01-05", "2025-01-06")]
        result = stats.filter_by_date_range(sessions, "2025-01-01", "2025-01-05")
        assert [s.date for s in result] == ["2025-01-01", "2025-01-05"]

    def test_filter_sessions_with_date_and_range(self) -> None:
        sessions = [make(date="2025-01-01"), make(date="2025-01-02")]
        assert stats.filter_sessions(sessions, SessionFilter()) == sessions
        assert stats.filter_sessions(sessions, SessionFilter(date="2025-01-02")) == sessions[1:]
        ranged = SessionFilter(date_range=("2025-01-02", "2025-01-09"))
        assert stats.filter_sessions(sessions, ranged) == sessions[1:]

    def test_filters_do_not_mutate_input(self) -> None:
        sessions = [make(date="2025-01-02"), make(date="2025-01-01")]
        snapshot = list(sessions)
        stats.filter_by_date(sessions, "2025-01-01")
        stats.sort_by_duration(sessions)
        assert sessions == snapshot


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class TestSorting:
    def test_start_time_defaults_to_ascending(self) -> None:
        late, early = make(start=100), make(start=0)
        assert stats.sort_by_start_time([late, early]) == [early, late]
        assert stats.sort_by_start_time([late, early], "desc") == [late, early]

    def test_end_time_defaults_to_ascending(self) -> None:
        long_one, short_one = make(duration=900), make(duration=60)
        assert stats.sort_by_end_time([long_one, short_one]) == [short_one, long_one]

    def test_duration_defaults_to_longest_first(self) -> None:
        short_one, long_one = make(duration=60), make(duration=900)
        assert stats.sort_by_duration([short_one, long_one]) == [long_one, short_one]
        assert stats.sort_by_duration([long_one, short_one], "asc") == [short_one, long_one]

    @pytest.mark.parametrize("direction", ["asc", "desc"])
    def test_sort_is_stable(self, direction: str) -> None:
        a, b, c = make(task="a"), make(task="b"), make(task="c")
        assert stats.sort_by_duration([a, b, c], direction) == [a, b, c]

    def test_sort_sessions_dispatches_on_field(self) -> None:
        short_one, long_one = make(duration=60), make(duration=900)
        result = stats.sort_sessions([short_one, long_one], SessionSort("duration", "desc"))
        assert result == [long_one, short_one]

    def test_sort_rejects_unknown_field(self) -> None:
        with pytest.raises(ValueError):
            SessionSort("task", "asc")

    def test_sort_rejects_unknown_direction(self) -> None:
        with pytest.raises(ValueError):
            SessionSort("duration", "up")

    def test_process_sessions_filters_then_sorts(self) -> None:
        sessions = [make(start=50, date="2025-01-01"), make(start=0, date="2025-01-01"), make(date="2025-01-02")]
        result = stats.process_sessions(
            sessions, SessionFilter(date="2025-01-01"), SessionSort("start_time", "asc")
        )
        assert result == [sessions[1], sessions[0]]

    def test_process_sessions_without_options_copies(self) -> None:
        sessions = [make(), make()]
        result = stats.process_sessions(sessions)
        assert result == sessions
        assert result is not sessions


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


class TestCalculateStats:
    def test_empty_input(self) -> None:
        result = stats.calculate_stats([])
        assert result.total_sessions == 0
        assert result.total_time == 0
        assert result.average_time == 0
        assert result.longest_session is None
        assert result.shortest_session is None

    def test_totals_and_extremes(self) -> None:
        a, b, c = make(duration=300), make(duration=900), make(duration=600)
        result = stats.calculate_stats([a, b, c])
        assert result.total_sessions == 3
        assert result.total_time == 1800
        assert result.average_time == 600
        assert result.longest_session is b
        assert result.shortest_session is a

    def test_ties_resolve_to_first_in_input_order(self) -> None:
        a, b = make(task="a", duration=600), make(task="b", duration=600)
        result = stats.calculate_stats([a, b])
        assert result.longest_session is a
        assert result.shortest_session is a

    def test_total_duration(self) -> None:
        assert stats.calculate_total_duration([make(duration=60), make(duration=90)]) == 150
        assert stats.calculate_total_duration([]) == 0


class TestDailyStats:
    def test_empty_day(self) -> None:
        result = stats.calculate_daily_stats([make(date="2025-01-02")], "2025-01-01")
        assert result.date == "2025-01-01"
        assert result.total_sessions == 0
        assert result.average_time == 0
        assert result.first_session_time is None
        assert result.last_session_time is None

    def test_scoped_to_date_with_clock_times(self) -> None:
        late = make(start=3600, duration=600)
        early = make(start=0, duration=300)
        other_day = make(start=0, duration=999, date="2025-01-02")

        result = stats.calculate_daily_stats([late, other_day, early], "2025-01-01")
        assert result.total_sessions == 2
        assert result.total_time == 900
        assert result.average_time == 450
        assert result.longest_session is late
        assert result.first_session_time == local_clock(early.start_time)
        assert result.last_session_time == local_clock(late.end_time)


# ---------------------------------------------------------------------------
# Grouping and search
# ---------------------------------------------------------------------------


class TestGroupByTask:
    def test_groups_with_counts_and_totals(self) -> None:
        sessions = [make("write", duration=600), make("write", duration=300), make("read", duration=120)]
        groups = stats.group_by_task(sessions)

        assert [g.task for g in groups] == ["write", "read"]
        write, read = groups
        assert write.count == 2
        assert write.total_duration == 900
        assert write.sessions == sessions[:2]
        assert read.count == 1
        assert read.total_duration == 120

    def test_labels_are_compared_verbatim(self) -> None:
        groups = stats.group_by_task([make("Write"), make("write"), make("write ")])
        assert len(groups) == 3

    def test_empty_input(self) -> None:
        assert stats.group_by_task([]) == []


class TestSearch:
    @pytest.fixture()
    def sessions(self) -> list[TimerSession]:
        return [
            make("Write report", reflection=ReflectionData(result="intro finished")),
            make("read", reflection=ReflectionData(distractions="Slack pings")),
            make("plan", reflection=ReflectionData(thoughts="too ambitious")),
        ]

    def test_matches_task_case_insensitively(self, sessions: list[TimerSession]) -> None:
        assert stats.search(sessions, "REPORT") == [sessions[0]]

    @pytest.mark.parametrize(("query", "index"), [("intro", 0), ("slack", 1), ("Ambitious", 2)])
    def test_matches_reflection_fields(self, sessions: list[TimerSession], query: str, index: int) -> None:
        assert stats.search(sessions, query) == [sessions[index]]

    @pytest.mark.parametrize("query", ["", "   "])
    def test_blank_query_returns_input(self, sessions: list[TimerSession], query: str) -> None:
        assert stats.search(sessions, query) is sessions

    def test_no_match(self, sessions: list[TimerSession]) -> None:
        assert stats.search(sessions, "nothing like this") == []
