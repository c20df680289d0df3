# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/procedure/executor.py

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional

from hostharden.config.models import ResolvedConfig
from hostharden.errors import HostUnreachableError
from hostharden.inventory import TargetHost
from hostharden.observers.dispatcher import EventBus
from hostharden.observers.events import (
    HostRecap,
    HostUnreachable,
    RunStarted,
    RunSummary,
    new_ctx,
    stamp,
)
from hostharden.utils.ssh import open_ssh, wait_for_ssh

from .context import HostContext
from .hardening import build_procedure
from .runner import CHANGED, FAILED, IGNORED, OK, SKIPPED, Handler, HostReport, Task, run_tasks

log = logging.getLogger("hostharden")

Connector = Callable[[TargetHost], Any]


@dataclass
class RunOptions:
    tags: Optional[List[str]] = None
    dry_run: bool = False
    forks: int = 5
    connect_attempts: int = 3
    connect_delay: float = 5.0
    connect_timeout: float = 20.0


def _default_connect(options: RunOptions) -> Connector:
    return partial(
        wait_for_ssh,
        attempts=options.connect_attempts,
        delay=options.connect_delay,
        connect_timeout=options.connect_timeout,
    )


def _default_reopen(options: RunOptions) -> Connector:
    return partial(open_ssh, connect_timeout=options.connect_timeout)


def _harden_one(
    host: TargetHost,
    tasks: List[Task],
    handlers: List[Handler],
    options: RunOptions,
    connect: Connector,
    reopen: Connector,
    bus: EventBus,
    run_ctx: Dict,
    sleep: Callable[[float], None],
) -> HostReport:
    log.info("[%s] connecting to %s:%d", host.hostname, host.address, host.port)
    try:
        runner = connect(host)
    except HostUnreachableError as e:
        bus.emit(HostUnreachable(host=host.hostname, error=str(e), **stamp(run_ctx)))
        return HostReport(hostname=host.hostname, unreachable=True, error=str(e))

    ctx = HostContext(
        host=host,
        runner=runner,
        dry_run=options.dry_run,
        reconnect=partial(reopen, host),
        sleep=sleep,
    )
    try:
        report = run_tasks(ctx, tasks, handlers, bus=bus, run_ctx=run_ctx)
    finally:
        ctx.runner.close()

    bus.emit(
        HostRecap(
            host=host.hostname,
            ok=report.count(OK),
            changed=report.count(CHANGED),
            failed=report.count(FAILED),
            ignored=report.count(IGNORED),
            skipped=report.count(SKIPPED),
            error=report.error,
            **stamp(run_ctx),
        )
    )
    log.info("[%s] %s", host.hostname, report.summary())
    return report


def harden_hosts(
    hosts: Iterable[TargetHost],
    resolved: ResolvedConfig,
    options: Optional[RunOptions] = None,
    observers: Optional[List] = None,
    *,
    connect: Optional[Connector] = None,
    reopen: Optional[Connector] = None,
    run_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, HostReport]:
    """
    Run the hardening procedure on every host.

    Each host gets its own connection and strictly sequential task stream;
    up to ``forks`` hosts run at once. A failure on one host never stops the
    others. *resolved* is shared read-only, so the controller key and the
    password hash are evaluated once for the whole run.
    """
    options = options or RunOptions()
    hosts = list(hosts)
    if reopen is None:
        # a custom connector also serves post-reboot reconnects
        reopen = connect or _default_reopen(options)
    connect = connect or _default_connect(options)

    tasks, handlers = build_procedure(resolved, options.tags)
    bus = EventBus(observers or [])
    run_ctx = new_ctx(run_id)

    bus.emit(RunStarted(hosts=[h.hostname for h in hosts], check_mode=options.dry_run, **stamp(run_ctx)))

    reports: Dict[str, HostReport] = {}
    if hosts:
        with ThreadPoolExecutor(
            max_workers=min(options.forks, len(hosts)),
            thread_name_prefix="host",
        ) as pool:
            futures = {
                h.hostname: pool.submit(
                    _harden_one, h, tasks, handlers, options, connect, reopen, bus, run_ctx, sleep
                )
                for h in hosts
            }
            for h in hosts:
                reports[h.hostname] = futures[h.hostname].result()

    bus.emit(
        RunSummary(
            ok=sum(1 for r in reports.values() if not r.failed),
            failed=sum(1 for r in reports.values() if r.failed and not r.unreachable),
            unreachable=sum(1 for r in reports.values() if r.unreachable),
            **stamp(run_ctx),
        )
    )
    return reports
