# src/hostharden/observers/console.py
import typer

from .events import (
    BaseEvent,
    HandlerRan,
    HostRecap,
    HostUnreachable,
    RunStarted,
    RunSummary,
    TaskFinished,
    VerifyFinding,
)

_COLORS = {
    "ok": typer.colors.GREEN,
    "changed": typer.colors.YELLOW,
    "failed": typer.colors.RED,
    "ignored": typer.colors.CYAN,
    "skipped": typer.colors.BLUE,
}


class ConsoleObserver:
    """Ansible-like one line per task; other events are ignored."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, RunStarted):
            mode = " (check mode)" if event.check_mode else ""
            typer.secho(f"PLAY [harden {', '.join(event.hosts)}]{mode}", bold=True)
        elif isinstance(event, TaskFinished):
            line = f"[{event.host}] {event.status}: {event.task}"
            if event.msg and event.status != "ok":
                line += f" => {event.msg}"
            typer.secho(line, fg=_COLORS.get(event.status))
        elif isinstance(event, HandlerRan):
            typer.secho(
                f"[{event.host}] RUNNING HANDLER [{event.handler}] {event.status}",
                fg=_COLORS.get(event.status),
            )
        elif isinstance(event, HostUnreachable):
            typer.secho(f"[{event.host}] UNREACHABLE: {event.error}", fg=typer.colors.RED)
        elif isinstance(event, HostRecap):
            fg = typer.colors.RED if event.failed else typer.colors.GREEN
            typer.secho(
                f"{event.host:<24} ok={event.ok} changed={event.changed} failed={event.failed} "
                f"ignored={event.ignored} skipped={event.skipped}",
                fg=fg,
            )
        elif isinstance(event, VerifyFinding):
            mark = "PASS" if event.ok else "FAIL"
            typer.secho(
                f"[{event.host}] {mark} {event.check}" + (f": {event.detail}" if event.detail else ""),
                fg=typer.colors.GREEN if event.ok else typer.colors.RED,
            )
        elif isinstance(event, RunSummary):
            typer.secho(
                f"hosts ok={event.ok} failed={event.failed} unreachable={event.unreachable}",
                bold=True,
            )
