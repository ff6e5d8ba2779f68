"""Tests for the markdown day report."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from retrotimer.core.session import ReflectionData, TimerSession, create_session
from retrotimer.core.stats import group_by_task
from retrotimer.export.markdown import (
    export_day,
    export_filename,
    format_duration,
    format_sessions_to_markdown,
)

# Naive datetimes render their own clock time, independent of the host zone.
T0 = datetime(2025, 1, 1, 9, 0, 0)


def make(task: str, start: float, duration: float, reflection: ReflectionData = ReflectionData(),
         date: str = "2025-01-01") -> TimerSession:
    start_time = T0 + timedelta(seconds=start)
    return create_session(task, start_time, start_time + timedelta(seconds=duration), reflection, date)


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0, "0m"), (59, "0m"), (60, "1m"), (2700, "45m"), (3600, "1h 0m"), (9000, "2h 30m")],
    )
    def test_format(self, seconds: int, expected: str) -> None:
        assert format_duration(seconds) == expected


class TestFormatSessions:
    @pytest.fixture()
    def sessions(self) -> list[TimerSession]:
        return [
            make("write", 0, 600, ReflectionData(result="intro", distractions="phone", thoughts="ok")),
            make("read", 1800, 1200, ReflectionData(result="chapter 1")),
            make("write", 3600, 900),
        ]

    def test_header_and_totals(self, sessions: list[TimerSession]) -> None:
        content = format_sessions_to_markdown(sessions, "2025-01-01", group_by_task(sessions))
        assert content.title == "Timer sessions - 2025-01-01"
        assert content.session_count == 3
        assert content.total_duration == 2700
        assert content.markdown.startswith("# Timer sessions - 2025-01-01\n")
        assert "**Sessions**: 3" in content.markdown
        assert "**Focus time**: 45m" in content.markdown

    def test_groups_in_first_appearance_order(self, sessions: list[TimerSession]) -> None:
        markdown = format_sessions_to_markdown(sessions, "2025-01-01", group_by_task(sessions)).markdown
        assert markdown.index("## write") < markdown.index("## read")
        assert "**2 sessions** | **25m**" in markdown
        assert "**1 sessions** | **20m**" in markdown

    def test_session_entries(self, sessions: list[TimerSession]) -> None:
        markdown = format_sessions_to_markdown(sessions, "2025-01-01", group_by_task(sessions)).markdown
        assert "### Session 1 (09:00)" in markdown
        assert "### Session 2 (10:00)" in markdown
        assert "**Result**: intro" in markdown
        assert "**Distractions**: phone" in markdown
        assert "**Thoughts**: ok" in markdown

    def test_empty_reflection_fields_are_omitted(self) -> None:
        sessions = [make("write", 0, 600)]
        markdown = format_sessions_to_markdown(sessions, "2025-01-01", group_by_task(sessions)).markdown
        assert "**Result**" not in markdown
        assert "**Distractions**" not in markdown


class TestExportDay:
    def test_writes_file_named_after_date(self, tmp_path: Path) -> None:
        sessions = [make("write", 0, 600), make("read", 0, 60, date="2025-01-02")]
        path = export_day(sessions, "2025-01-01", tmp_path)

        assert path == tmp_path / export_filename("2025-01-01")
        assert path.name == "timer-sessions-2025-01-01.md"
        text = path.read_text(encoding="utf-8")
        assert "## write" in text
        assert "## read" not in text

    def test_creates_directory(self, tmp_path: Path) -> None:
        path = export_day([make("write", 0, 600)], "2025-01-01", tmp_path / "reports")
        assert path.exists()

    def test_nothing_to_export(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="no sessions on 2025-01-05"):
            export_day([make("write", 0, 600)], "2025-01-05", tmp_path)
        assert not list(tmp_path.iterdir())
