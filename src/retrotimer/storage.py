"""Session repository backed by a JSON document on disk."""

from __future__ import annotations

import fcntl
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from retrotimer.core import stats
from retrotimer.core.session import TimerSession, update_session
from retrotimer.core.stats import DailyStats, SessionFilter, SessionSort, SessionStats

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".config" / "retrotimer"
_SESSIONS_FILE = "sessions.json"

_NEWEST_FIRST = SessionSort("start_time", stats.DESC)
_OLDEST_FIRST = SessionSort("start_time", stats.ASC)


class StorageError(Exception):
    """Raised when the session document cannot be read or written."""


class SessionNotFoundError(KeyError):
    """Raised when no stored session has the requested id."""

    def __str__(self) -> str:
        return f"no session with id {self.args[0]!r}"


def session_to_dict(session: TimerSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "task": session.task,
        "start_time": session.start_time.isoformat(),
        "end_time": session.end_time.isoformat(),
        "duration": session.duration,
        "result": session.result,
        "distractions": session.distractions,
        "thoughts": session.thoughts,
        "date": session.date,
    }


def session_from_dict(data: Mapping[str, Any]) -> TimerSession:
    """Rebuild a session from its stored form.

    Raises :class:`StorageError` when a required field is missing or a
    timestamp does not parse.
    """
    try:
        return TimerSession(
            id=data["id"],
            task=data.get("task", ""),
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            duration=int(data.get("duration", 0)),
            result=data.get("result", ""),
            distractions=data.get("distractions", ""),
            thoughts=data.get("thoughts", ""),
            date=data["date"],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"malformed session record: {exc}") from exc


class SessionRepository:
    """Stores sessions in ``<data_dir>/sessions.json``.

    Each write replaces the whole document under an exclusive ``fcntl`` lock;
    reads take a shared lock.  Timestamps are kept as ISO 8601 strings so
    they come back exactly as they were saved.
    """

    def __init__(self, data_dir: Path | None = None) -> None:
        self._data_dir: Path = data_dir if data_dir is not None else DEFAULT_DATA_DIR

    @property
    def path(self) -> Path:
        return self._data_dir / _SESSIONS_FILE

    # -- public API ----------------------------------------------------------

    def save_session(self, session: TimerSession) -> str:
        """Persist *session* and return its id."""
        sessions = self._load()
        sessions.append(session)
        self._save(sessions)
        logger.info("Saved session %s (%s, %ds)", session.id, session.task, session.duration)
        return session.id

    def get_session(self, session_id: str) -> TimerSession:
        for session in self._load():
            if session.id == session_id:
                return session
        raise SessionNotFoundError(session_id)

    def get_sessions_by_date(self, date: str) -> list[TimerSession]:
        """Sessions dated *date*, oldest first."""
        return stats.process_sessions(self._load(), SessionFilter(date=date), _OLDEST_FIRST)

    def get_all_sessions(self, limit: int | None = None) -> list[TimerSession]:
        """All sessions, newest first, optionally capped at *limit*."""
        sessions = stats.sort_sessions(self._load(), _NEWEST_FIRST)
        return sessions[:limit] if limit else sessions

    def get_sessions(
        self,
        session_filter: SessionFilter | None = None,
        session_sort: SessionSort | None = None,
    ) -> list[TimerSession]:
        """Filtered and sorted sessions; newest first when no sort is given."""
        return stats.process_sessions(self._load(), session_filter, session_sort or _NEWEST_FIRST)

    def update_session(self, session_id: str, updates: Mapping[str, Any]) -> TimerSession:
        """Apply *updates* to the stored session and return the new record."""
        sessions = self._load()
        for index, session in enumerate(sessions):
            if session.id == session_id:
                sessions[index] = update_session(session, updates)
                self._save(sessions)
                logger.info("Updated session %s (%s)", session_id, ", ".join(sorted(updates)))
                return sessions[index]
        raise SessionNotFoundError(session_id)

    def delete_session(self, session_id: str) -> None:
        sessions = self._load()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            raise SessionNotFoundError(session_id)
        self._save(remaining)
        logger.info("Deleted session %s", session_id)

    def get_session_stats(self, session_filter: SessionFilter | None = None) -> SessionStats:
        return stats.calculate_stats(self.get_sessions(session_filter))

    def get_daily_stats(self, date: str) -> DailyStats:
        return stats.calculate_daily_stats(self._load(), date)

    # -- persistence ---------------------------------------------------------

    def _save(self, sessions: list[TimerSession]) -> None:
        """Write *sessions* to the JSON file with file locking."""
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                json.dump({"sessions": [session_to_dict(s) for s in sessions]}, f, indent=2)
        except OSError as exc:
            raise StorageError(f"cannot write {self.path}: {exc}") from exc

    def _load(self) -> list[TimerSession]:
        """Load all sessions, or an empty list when nothing was saved yet."""
        if not self.path.exists():
            return []

        try:
            with open(self.path) as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("sessions", []), list):
            raise StorageError(f"unexpected document layout in {self.path}")
        return [session_from_dict(record) for record in data.get("sessions", [])]
