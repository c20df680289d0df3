# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/procedure/runner.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from hostharden.observers.dispatcher import EventBus
from hostharden.observers.events import HandlerRan, TaskFinished, TaskStarted, new_ctx, stamp
from hostharden.tasks.base import TaskResult

from .context import HostContext

log = logging.getLogger("hostharden")

OK = "ok"
CHANGED = "changed"
FAILED = "failed"
IGNORED = "ignored"
SKIPPED = "skipped"


@dataclass(frozen=True)
class Task:
    name: str
    phase: str
    action: Callable[[HostContext], TaskResult]
    ignore_errors: bool = False
    notify: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Handler:
    name: str
    action: Callable[[HostContext], TaskResult]


class NotifyFlags:
    """
    Pending handler names. Setting a flag twice is a no-op, so any number
    of notifications collapse into a single handler run.
    """

    def __init__(self) -> None:
        self._pending: set = set()

    def notify(self, names: Iterable[str]) -> None:
        self._pending.update(names)

    def is_set(self, name: str) -> bool:
        return name in self._pending

    def pending(self, handlers: Sequence[Handler]) -> List[Handler]:
        """Flagged handlers in definition order."""
        return [h for h in handlers if h.name in self._pending]

    def __bool__(self) -> bool:
        return bool(self._pending)


@dataclass
class TaskOutcome:
    name: str
    phase: str
    status: str
    msg: str = ""

    @property
    def changed(self) -> bool:
        return self.status == CHANGED


@dataclass
class HostReport:
    hostname: str
    outcomes: List[TaskOutcome] = field(default_factory=list)
    handlers_run: List[str] = field(default_factory=list)
    unreachable: bool = False
    error: Optional[str] = None

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def failed(self) -> bool:
        return self.unreachable or self.error is not None

    def changed_tasks(self) -> List[str]:
        return [o.name for o in self.outcomes if o.changed]

    def summary(self) -> str:
        return (
            f"ok={self.count(OK)} changed={self.count(CHANGED)} failed={self.count(FAILED)} "
            f"ignored={self.count(IGNORED)} skipped={self.count(SKIPPED)}"
        )


def _check_notify_targets(tasks: Sequence[Task], handlers: Sequence[Handler]) -> None:
    known = {h.name for h in handlers}
    for task in tasks:
        unknown = set(task.notify) - known
        if unknown:
            raise ValueError(f"Task '{task.name}' notifies unknown handler(s): {sorted(unknown)}")


def run_tasks(
    ctx: HostContext,
    tasks: Sequence[Task],
    handlers: Sequence[Handler] = (),
    bus: Optional[EventBus] = None,
    run_ctx: Optional[Dict] = None,
) -> HostReport:
    """
    Execute *tasks* in order against one host.

    - a failing task with ``ignore_errors`` is recorded and the run goes on
    - any other failure stops this host; later tasks are marked skipped and
      pending handlers are not run
    - handlers flagged by changed tasks run once each after the last task
    """
    _check_notify_targets(tasks, handlers)
    bus = bus or EventBus()
    run_ctx = run_ctx or new_ctx()
    report = HostReport(hostname=ctx.hostname)
    flags = NotifyFlags()

    def _record(task: Task, status: str, msg: str) -> None:
        report.outcomes.append(TaskOutcome(task.name, task.phase, status, msg))
        bus.emit(
            TaskFinished(
                host=ctx.hostname, task=task.name, phase=task.phase,
                status=status, msg=msg, **stamp(run_ctx),
            )
        )

    for i, task in enumerate(tasks):
        bus.emit(TaskStarted(host=ctx.hostname, task=task.name, phase=task.phase, **stamp(run_ctx)))
        log.debug("[%s] TASK [%s]", ctx.hostname, task.name)
        try:
            result = task.action(ctx)
        except Exception as e:
            if task.ignore_errors:
                log.info("[%s] ignoring failure in '%s': %s", ctx.hostname, task.name, e)
                _record(task, IGNORED, str(e))
                continue
            log.error("[%s] '%s' failed: %s", ctx.hostname, task.name, e)
            _record(task, FAILED, str(e))
            report.error = f"{task.name}: {e}"
            for rest in tasks[i + 1:]:
                _record(rest, SKIPPED, "previous task failed")
            return report

        _record(task, CHANGED if result.changed else OK, result.msg)
        if result.changed and task.notify:
            flags.notify(task.notify)

    for handler in flags.pending(handlers):
        log.info("[%s] RUNNING HANDLER [%s]", ctx.hostname, handler.name)
        try:
            result = handler.action(ctx)
        except Exception as e:
            log.error("[%s] handler '%s' failed: %s", ctx.hostname, handler.name, e)
            bus.emit(HandlerRan(host=ctx.hostname, handler=handler.name, status=FAILED, msg=str(e), **stamp(run_ctx)))
            report.error = f"handler {handler.name}: {e}"
            return report
        report.handlers_run.append(handler.name)
        bus.emit(HandlerRan(host=ctx.hostname, handler=handler.name, status=CHANGED, msg=result.msg, **stamp(run_ctx)))

    return report
