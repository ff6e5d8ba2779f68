"""Completion notifications."""

from __future__ import annotations

from typing import Protocol

import click


class Notifier(Protocol):
    """Anything that can announce a finished timer."""

    def notify_completion(self, task: str) -> None: ...


def completion_message(task: str) -> str:
    if task:
        return f'Timer complete: "{task}" is done.'
    return "Timer complete: your focus time is up."


class TerminalNotifier:
    """Ring the terminal bell and print the completion message to stderr."""

    def __init__(self, bell: bool = True) -> None:
        self._bell = bell

    def notify_completion(self, task: str) -> None:
        prefix = "\a" if self._bell else ""
        click.echo(prefix + completion_message(task), err=True)


class NullNotifier:
    def notify_completion(self, task: str) -> None:
        pass
