# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/firewalld.py

from __future__ import annotations

import shlex
from typing import List

from hostharden.errors import TaskError
from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

PERMANENT = "permanent"
RUNTIME = "runtime"


def _args(zone: str, permanent: bool) -> List[str]:
    args = ["firewall-cmd"]
    if permanent:
        args.append("--permanent")
    return args + [f"--zone={zone}"]


def _query(ctx: HostContext, zone: str, kind: str, value: str, *, permanent: bool) -> bool:
    cmd = shlex.join(_args(zone, permanent) + [f"--query-{kind}={value}"])
    rc, out, err = ctx.sudo(cmd)
    if rc == 0:
        return True
    if rc == 1:
        return False
    raise TaskError(f"`{cmd}` failed (rc={rc}): {(err or out).strip()}")


def plan_zone_change(*, permanent: bool, runtime: bool, enabled: bool) -> List[str]:
    """Layers (permanent config, live runtime) that differ from *enabled*."""
    layers = []
    if permanent != enabled:
        layers.append(PERMANENT)
    if runtime != enabled:
        layers.append(RUNTIME)
    return layers


def _converge(ctx: HostContext, zone: str, kind: str, value: str, enabled: bool) -> TaskResult:
    layers = plan_zone_change(
        permanent=_query(ctx, zone, kind, value, permanent=True),
        runtime=_query(ctx, zone, kind, value, permanent=False),
        enabled=enabled,
    )
    verb = "add" if enabled else "remove"
    if not layers:
        return ok(f"{kind} {value} already {'in' if enabled else 'absent from'} zone {zone}")
    if not ctx.dry_run:
        for layer in layers:
            ctx.sudo_checked(
                shlex.join(_args(zone, layer == PERMANENT) + [f"--{verb}-{kind}={value}"])
            )
    return changed(f"{verb} {kind} {value} in zone {zone} ({', '.join(layers)})")


def service_in_zone(ctx: HostContext, service: str, zone: str, *, enabled: bool = True) -> TaskResult:
    return _converge(ctx, zone, "service", service, enabled)


def source_in_zone(ctx: HostContext, source: str, zone: str, *, enabled: bool = True) -> TaskResult:
    return _converge(ctx, zone, "source", source, enabled)
