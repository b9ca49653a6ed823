"""
Renders a session's event stream in the terminal.
"""

import asyncio
import logging

from rich.console import Console

from qup.core.events import (
    DirectoryStatus,
    FilesDiffered,
    LogLine,
    SessionEvent,
    SessionState,
    StateChanged,
)
from qup.core.session import Session

from .formatters import print_diff_table

log = logging.getLogger(__name__)

LEVEL_STYLES = {
    "info": "",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}

STATE_STYLES = {
    SessionState.READY_TO_SYNC: "green",
    SessionState.ERROR: "bold red",
    SessionState.CANCELLED: "yellow",
}


class ActivityView:
    """
    Prints the events of one or more sessions. Log lines already reach the terminal
    through the logging handler, so they are only echoed when `echo_log` is set.
    """

    def __init__(self, console: Console, echo_log: bool = False, show_diff: bool = True):
        self.console = console
        self.echo_log = echo_log
        self.show_diff = show_diff
        self.last_diff: FilesDiffered | None = None

    def render(self, event: SessionEvent, label: str = "") -> None:
        prefix = f"[bold]{label}[/bold] " if label else ""
        if isinstance(event, LogLine):
            if self.echo_log:
                style = LEVEL_STYLES.get(event.level, "")
                text = prefix + event.render()
                self.console.print(f"[{style}]{text}[/{style}]" if style else text)
        elif isinstance(event, StateChanged):
            style = STATE_STYLES.get(event.current, "dim")
            self.console.print(
                f"{prefix}[{style}]{event.previous.value} → {event.current.value}[/{style}]"
            )
        elif isinstance(event, FilesDiffered):
            self.last_diff = event
            if self.show_diff:
                print_diff_table(event.records, event.aggregate_digest)
        elif isinstance(event, DirectoryStatus):
            if event.writable:
                self.console.print(f"{prefix}[dim]{event.path} is writable.[/dim]")
            else:
                self.console.print(f"{prefix}[yellow]{event.path} is not writable.[/yellow]")

    def drain(self, session: Session, label: str = "") -> None:
        """Renders every event already queued without waiting."""
        while not session.events.empty():
            self.render(session.events.get_nowait(), label)

    async def follow(self, session: Session, label: str = "") -> None:
        while True:
            event = await session.events.get()
            self.render(event, label)


async def drive(view: ActivityView, session: Session, awaitable, label: str = ""):
    """Awaits `awaitable` while rendering the session's events as they arrive."""
    follower = asyncio.create_task(view.follow(session, label))
    try:
        return await awaitable
    finally:
        follower.cancel()
        await asyncio.gather(follower, return_exceptions=True)
        view.drain(session, label)
        log.debug(f"Stopped following session {session.session_id}.")
