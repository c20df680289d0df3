# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/apt.py

from __future__ import annotations

import shlex
from typing import List

from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
# keep locally modified conffiles (sshd_config among them) during upgrades
_DPKG_OPTS = ["-o", "Dpkg::Options::=--force-confdef", "-o", "Dpkg::Options::=--force-confold"]


def pending_upgrades(simulation: str) -> List[str]:
    """Package names an `apt-get -s` run would install or upgrade."""
    return [
        line.split()[1]
        for line in simulation.splitlines()
        if line.startswith("Inst ") and len(line.split()) > 1
    ]


def upgrade_dist(ctx: HostContext, *, timeout: int = 3600) -> TaskResult:
    """
    Refresh the index and upgrade everything, including packages whose
    dependencies changed. Reports changed only when something was upgraded.
    """
    ctx.sudo_checked("apt-get update -q", env=APT_ENV, timeout=600)
    simulation = ctx.sudo_checked("apt-get -s dist-upgrade", env=APT_ENV, timeout=600)
    pkgs = pending_upgrades(simulation)
    if not pkgs:
        return ok("all packages up to date")
    if ctx.dry_run:
        return changed(f"{len(pkgs)} packages would be upgraded")
    ctx.sudo_checked(
        shlex.join(["apt-get", "-y", "-q", *_DPKG_OPTS, "dist-upgrade"]),
        env=APT_ENV,
        timeout=timeout,
    )
    return changed(f"{len(pkgs)} packages upgraded: {' '.join(pkgs[:10])}{' ...' if len(pkgs) > 10 else ''}")


def package_present(ctx: HostContext, name: str) -> TaskResult:
    rc, out, _ = ctx.sudo(shlex.join(["dpkg-query", "-W", "-f=${Status}", name]))
    if rc == 0 and out.strip() == "install ok installed":
        return ok(f"{name} installed")
    if ctx.dry_run:
        return changed(f"{name} would be installed")
    ctx.sudo_checked(
        shlex.join(["apt-get", "install", "-y", "-q", *_DPKG_OPTS, name]),
        env=APT_ENV,
        timeout=900,
    )
    return changed(f"{name} installed")
