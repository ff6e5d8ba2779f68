"""CLI entry point for retrotimer.

Uses Click to expose the ``retrotimer`` command group.  Timer commands
delegate to :class:`TimerController`; history commands read the session
repository.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

import click

import retrotimer
from retrotimer.core import stats
from retrotimer.core.controller import InvalidStateError, TimerController
from retrotimer.core.driver import TimerDriver
from retrotimer.core.session import ReflectionData, TimerSession, session_date, validate_session
from retrotimer.core.stats import SessionFilter, SessionSort
from retrotimer.core.timer import TimerState, TimerStatus, format_time, format_time_long
from retrotimer.export.markdown import export_day, format_duration
from retrotimer.notify import TerminalNotifier
from retrotimer.storage import DEFAULT_DATA_DIR, SessionNotFoundError, SessionRepository, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DATE = click.DateTime(formats=["%Y-%m-%d"])
_ERRORS = (InvalidStateError, StorageError, SessionNotFoundError, ValueError, TypeError)


def _run(action: Callable[[], T]) -> T:
    """Execute *action*, converting domain errors to a CLI error.

    The message is printed to stderr and the process exits with code 1.
    """
    try:
        return action()
    except _ERRORS as exc:
        logger.debug("Command failed", exc_info=True)
        click.echo(str(exc), err=True)
        sys.exit(1)


def _controller(ctx: click.Context) -> TimerController:
    return _run(lambda: TimerController(data_dir=ctx.obj["data_dir"], notifier=TerminalNotifier()))


def _repository(ctx: click.Context) -> SessionRepository:
    return SessionRepository(ctx.obj["data_dir"])


def _today() -> str:
    return session_date(datetime.now().astimezone())


def _day(value: datetime | None) -> str:
    return value.date().isoformat() if value is not None else _today()


def _session_line(session: TimerSession) -> str:
    start = session.start_time.astimezone().strftime("%H:%M")
    end = session.end_time.astimezone().strftime("%H:%M")
    return (
        f"{session.id}  {session.date} {start}-{end}  "
        f"{format_time_long(session.duration):>8}  {session.task}"
    )


@click.group()
@click.version_option(version=retrotimer.__version__, prog_name="retrotimer")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="RETROTIMER_HOME",
    default=DEFAULT_DATA_DIR,
    show_default=True,
    help="Where the timer state and sessions are stored.",
)
@click.option("-v", "--verbose", is_flag=True, help="Log what is happening to stderr.")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path, verbose: bool) -> None:
    """retrotimer: a focus timer with a reflection after every session."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir


# -- timer commands -----------------------------------------------------------


@cli.command()
@click.argument("task")
@click.option(
    "-m", "--minutes", type=int, default=None, help="Timer length (1-60, default 10); not allowed when resuming."
)
@click.pass_context
def start(ctx: click.Context, task: str, minutes: int | None) -> None:
    """Start focusing on TASK."""
    controller = _controller(ctx)
    message = _run(lambda: controller.start(task, minutes))
    click.echo(message)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the current timer status."""
    controller = _controller(ctx)
    message, exit_code = _run(controller.status)
    click.echo(message)
    sys.exit(exit_code)


@cli.command()
@click.pass_context
def pause(ctx: click.Context) -> None:
    """Pause the running timer."""
    controller = _controller(ctx)
    message = _run(controller.pause)
    click.echo(message)


@cli.command()
@click.pass_context
def resume(ctx: click.Context) -> None:
    """Resume a paused timer."""
    controller = _controller(ctx)
    message = _run(controller.resume)
    click.echo(message)


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Give up on the current timer."""
    controller = _controller(ctx)
    message = _run(controller.stop)
    click.echo(message)


@cli.command()
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Discard the current timer without recording it."""
    controller = _controller(ctx)
    message = _run(controller.reset)
    click.echo(message)


@cli.command()
@click.option("--result", default="", help="What got done.")
@click.option("--distractions", default="", help="What got in the way.")
@click.option("--thoughts", default="", help="Anything else worth remembering.")
@click.pass_context
def complete(ctx: click.Context, result: str, distractions: str, thoughts: str) -> None:
    """Record the finished timer with a short reflection."""
    controller = _controller(ctx)
    reflection = ReflectionData(result=result, distractions=distractions, thoughts=thoughts)
    session = _run(lambda: controller.complete(reflection))
    click.echo(f'Session saved: "{session.task}" ({format_time_long(session.duration)})')
    check = validate_session(session)
    if not check.is_valid:
        click.echo(f"Warning: session {session.id} has problems: {'; '.join(check.errors)}", err=True)


@cli.command()
@click.pass_context
def watch(ctx: click.Context) -> None:
    """Show a live countdown until the running timer completes."""
    controller = _controller(ctx)
    if controller.state.status != TimerStatus.RUNNING:
        click.echo("No running timer", err=True)
        sys.exit(1)
    try:
        final = _run(lambda: asyncio.run(_watch(controller)))
    except KeyboardInterrupt:
        click.echo("\nStopped watching; the timer keeps running.")
        return
    click.echo()
    if final.status == TimerStatus.COMPLETED:
        click.echo("Run 'retrotimer complete' to record how it went.")


async def _watch(controller: TimerController) -> TimerState:
    def show(state: TimerState) -> None:
        controller.record(state)
        click.echo(f"\r{format_time(state.time_left)} remaining: {state.task}  ", nl=False)

    driver = TimerDriver(
        controller.state,
        notifier=TerminalNotifier(),
        on_change=show,
        last_active_time=controller.last_active_time,
    )
    _install_suspend_handlers(driver)
    async with driver:
        driver.on_active()
        show(driver.state)
        await asyncio.wait({driver.start_ticking()})
    return driver.state


def _install_suspend_handlers(driver: TimerDriver) -> None:
    """Treat Ctrl-Z / ``fg`` as the watcher going inactive and active again."""
    if not hasattr(signal, "SIGTSTP"):
        return
    loop = asyncio.get_running_loop()

    def suspend() -> None:
        driver.on_inactive()
        os.kill(os.getpid(), signal.SIGSTOP)

    loop.add_signal_handler(signal.SIGTSTP, suspend)
    loop.add_signal_handler(signal.SIGCONT, driver.on_active)


# -- history commands ---------------------------------------------------------


@cli.command()
@click.option("--date", "on_date", type=_DATE, default=None, help="Only sessions on this day.")
@click.option("--from", "from_date", type=_DATE, default=None, help="First day of a range.")
@click.option("--to", "to_date", type=_DATE, default=None, help="Last day of a range.")
@click.option(
    "--sort",
    "sort_field",
    type=click.Choice(["start_time", "end_time", "duration"]),
    default="start_time",
    show_default=True,
)
@click.option("--asc/--desc", "ascending", default=None, help="Sort direction.")
@click.option("--search", "query", default="", help="Text to look for in task and reflection.")
@click.option(
    "--limit", type=click.IntRange(min=0), default=None, help="Show at most this many sessions (0 for all)."
)
@click.pass_context
def sessions(
    ctx: click.Context,
    on_date: datetime | None,
    from_date: datetime | None,
    to_date: datetime | None,
    sort_field: str,
    ascending: bool | None,
    query: str,
    limit: int | None,
) -> None:
    """List recorded sessions."""
    session_filter = SessionFilter()
    if on_date is not None:
        session_filter = SessionFilter(date=_day(on_date))
    elif from_date is not None or to_date is not None:
        start_day = from_date.date().isoformat() if from_date else "0000-01-01"
        end_day = to_date.date().isoformat() if to_date else "9999-12-31"
        session_filter = SessionFilter(date_range=(start_day, end_day))

    if ascending is None:
        direction = stats.DESC if sort_field == "duration" else stats.ASC
    else:
        direction = stats.ASC if ascending else stats.DESC

    repository = _repository(ctx)
    found = _run(lambda: repository.get_sessions(session_filter, SessionSort(sort_field, direction)))
    found = list(stats.search(found, query))[: limit or None]

    if not found:
        click.echo("No sessions found")
        return
    for session in found:
        click.echo(_session_line(session))


@cli.command("stats")
@click.option("--date", "on_date", type=_DATE, default=None, help="Day to summarize (default today).")
@click.option("--all", "all_time", is_flag=True, help="Summarize every recorded session.")
@click.pass_context
def stats_command(ctx: click.Context, on_date: datetime | None, all_time: bool) -> None:
    """Summarize focus time."""
    repository = _repository(ctx)

    if all_time:
        summary = _run(repository.get_session_stats)
        click.echo(f"Sessions: {summary.total_sessions}")
        click.echo(f"Focus time: {format_duration(summary.total_time)}")
        click.echo(f"Average: {format_time_long(int(summary.average_time))}")
        if summary.longest_session is not None:
            click.echo(f"Longest: {_session_line(summary.longest_session)}")
            click.echo(f"Shortest: {_session_line(summary.shortest_session)}")
        return

    daily = _run(lambda: repository.get_daily_stats(_day(on_date)))
    click.echo(f"Date: {daily.date}")
    click.echo(f"Sessions: {daily.total_sessions}")
    click.echo(f"Focus time: {format_duration(daily.total_time)}")
    click.echo(f"Average: {format_time_long(int(daily.average_time))}")
    if daily.first_session_time is not None:
        click.echo(f"First started: {daily.first_session_time}")
        click.echo(f"Last ended: {daily.last_session_time}")
    for group in stats.group_by_task(repository.get_sessions_by_date(daily.date)):
        click.echo(f"  {group.task}: {group.count} x, {format_duration(group.total_duration)}")


@cli.command()
@click.option("--date", "on_date", type=_DATE, default=None, help="Day to export (default today).")
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to write the markdown file into.",
)
@click.pass_context
def export(ctx: click.Context, on_date: datetime | None, output: Path) -> None:
    """Write a day's sessions to a markdown file."""
    day = _day(on_date)
    repository = _repository(ctx)
    path = _run(lambda: export_day(repository.get_sessions_by_date(day), day, output))
    click.echo(f"Exported {path}")


@cli.command()
@click.argument("session_id")
@click.pass_context
def delete(ctx: click.Context, session_id: str) -> None:
    """Delete the session SESSION_ID."""
    repository = _repository(ctx)
    _run(lambda: repository.delete_session(session_id))
    click.echo(f"Deleted session {session_id}")
