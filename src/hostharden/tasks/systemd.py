# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/systemd.py

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import List, Optional

from hostharden.errors import TaskError
from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

_ENABLED_STATES = {"enabled", "enabled-runtime"}
_ACTIVE_STATES = {"active", "activating", "reloading"}


@dataclass(frozen=True)
class ServiceState:
    enabled: Optional[bool]   # None for static/indirect units that cannot be toggled
    active: bool


def probe(ctx: HostContext, unit: str) -> ServiceState:
    rc, out, err = ctx.sudo(shlex.join(["systemctl", "is-enabled", unit]))
    state = out.strip()
    if rc != 0 and state in ("", "not-found"):
        raise TaskError(f"Could not find the requested service {unit}: {err.strip()}")

    if state in _ENABLED_STATES:
        enabled: Optional[bool] = True
    elif state in ("disabled", "masked", "masked-runtime"):
        enabled = False
    else:
        enabled = None

    _, out, _ = ctx.sudo(shlex.join(["systemctl", "is-active", unit]))
    return ServiceState(enabled=enabled, active=out.strip() in _ACTIVE_STATES)


def plan_service_change(current: ServiceState, *, enabled: bool, running: bool) -> List[str]:
    """systemctl verbs that move *current* to the desired state, in order."""
    verbs: List[str] = []
    if current.enabled is not None and current.enabled != enabled:
        verbs.append("enable" if enabled else "disable")
    if current.active != running:
        verbs.append("start" if running else "stop")
    return verbs


def _converge(ctx: HostContext, unit: str, *, enabled: bool, running: bool) -> TaskResult:
    verbs = plan_service_change(probe(ctx, unit), enabled=enabled, running=running)
    if not verbs:
        return ok(f"{unit} already {'enabled and running' if running else 'disabled and stopped'}")
    if not ctx.dry_run:
        for verb in verbs:
            ctx.sudo_checked(shlex.join(["systemctl", verb, unit]))
    return changed(f"{unit}: {', '.join(verbs)}")


def service_disabled(ctx: HostContext, unit: str) -> TaskResult:
    return _converge(ctx, unit, enabled=False, running=False)


def service_enabled(ctx: HostContext, unit: str) -> TaskResult:
    return _converge(ctx, unit, enabled=True, running=True)


def restart(ctx: HostContext, unit: str) -> TaskResult:
    if ctx.dry_run:
        return changed(f"{unit} would be restarted")
    ctx.sudo_checked(shlex.join(["systemctl", "restart", unit]))
    return changed(f"{unit} restarted")
