"""Render a day's sessions as a markdown report."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from retrotimer.core.session import TimerSession
from retrotimer.core.stats import SessionGroup, filter_by_date, group_by_task


@dataclass(frozen=True)
class MarkdownContent:
    title: str
    date: str
    markdown: str
    session_count: int
    total_duration: int


def format_duration(seconds: int) -> str:
    """Format *seconds* as ``2h 30m`` or ``45m``."""
    hours, rest = divmod(int(seconds), 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _clock(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime("%H:%M")


def _format_session(index: int, session: TimerSession) -> str:
    lines = [f"### Session {index} ({_clock(session.start_time)})"]
    if session.result:
        lines.append(f"**Result**: {session.result}")
    if session.distractions:
        lines.append(f"**Distractions**: {session.distractions}")
    if session.thoughts:
        lines.append(f"**Thoughts**: {session.thoughts}")
    lines.append("")
    return "\n".join(lines)


def _format_group(group: SessionGroup) -> str:
    header = f"## {group.task}\n"
    summary = f"**{group.count} sessions** | **{format_duration(group.total_duration)}**\n\n"
    body = "\n---\n\n".join(
        _format_session(index, session) for index, session in enumerate(group.sessions, start=1)
    )
    return header + summary + body


def format_sessions_to_markdown(
    sessions: Sequence[TimerSession],
    date: str,
    groups: Iterable[SessionGroup],
) -> MarkdownContent:
    """Build the report for *date* from its sessions and their task groups."""
    groups = list(groups)
    total_duration = sum(group.total_duration for group in groups)
    title = f"Timer sessions - {date}"

    markdown = "\n".join(
        [
            f"# {title}\n",
            f"**Sessions**: {len(sessions)}",
            f"**Focus time**: {format_duration(total_duration)}\n",
            "---\n",
            *(_format_group(group) for group in groups),
        ]
    )

    return MarkdownContent(
        title=title,
        date=date,
        markdown=markdown,
        session_count=len(sessions),
        total_duration=total_duration,
    )


def export_filename(date: str) -> str:
    return f"timer-sessions-{date}.md"


def write_markdown(content: MarkdownContent, directory: Path) -> Path:
    """Write *content* into *directory* and return the file path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(content.date)
    path.write_text(content.markdown, encoding="utf-8")
    return path


def export_day(sessions: Iterable[TimerSession], date: str, directory: Path) -> Path:
    """Filter *sessions* to *date*, render them and write the report.

    Raises ``ValueError`` when there is nothing to export for that date.
    """
    daily = filter_by_date(sessions, date)
    if not daily:
        raise ValueError(f"no sessions on {date}")
    content = format_sessions_to_markdown(daily, date, group_by_task(daily))
    return write_markdown(content, directory)
