# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/procedure/verify.py

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from hostharden.config.models import ResolvedConfig
from hostharden.errors import HostUnreachableError, TaskError
from hostharden.inventory import TargetHost
from hostharden.observers.dispatcher import EventBus
from hostharden.observers.events import HostUnreachable, VerifyFinding, new_ctx, stamp
from hostharden.tasks import files
from hostharden.utils.ssh import wait_for_ssh

from .context import HostContext
from .hardening import SUDOERS_DIR

log = logging.getLogger("hostharden")


@dataclass(frozen=True)
class Finding:
    check: str
    ok: bool
    detail: str = ""


def _effective_sshd(ctx: HostContext) -> dict:
    out = ctx.sudo_checked("sshd -T")
    settings: dict = {}
    for line in out.splitlines():
        key, _, value = line.strip().partition(" ")
        settings.setdefault(key.lower(), value.strip())
    return settings


def _zone_list(ctx: HostContext, zone: str, what: str, *, permanent: bool) -> List[str]:
    args = ["firewall-cmd"] + (["--permanent"] if permanent else []) + [f"--zone={zone}", f"--list-{what}"]
    return ctx.sudo_checked(shlex.join(args)).split()


def verify_host(ctx: HostContext, resolved: ResolvedConfig) -> List[Finding]:
    """
    Read-only audit of the hardened end state. Never mutates the host.
    """
    findings: List[Finding] = []
    fw = resolved.firewall

    def check(name: str, fn) -> None:
        try:
            ok, detail = fn()
        except TaskError as e:
            ok, detail = False, str(e)
        findings.append(Finding(name, ok, detail))

    def root_login():
        value = _effective_sshd(ctx).get("permitrootlogin", "")
        return value == "no", f"permitrootlogin {value or '<unset>'}"

    def public_zone():
        present = [
            layer
            for layer, permanent in (("permanent", True), ("runtime", False))
            if fw.service in _zone_list(ctx, fw.public_zone, "services", permanent=permanent)
        ]
        return not present, f"{fw.service} still in {fw.public_zone} ({', '.join(present)})" if present else ""

    def internal_sources():
        missing = []
        for permanent in (True, False):
            sources = _zone_list(ctx, fw.trusted_zone, "sources", permanent=permanent)
            missing += [c for c in resolved.allowed_ssh_networks if c not in sources and c not in missing]
        services = _zone_list(ctx, fw.trusted_zone, "services", permanent=False)
        if fw.service not in services:
            return False, f"{fw.service} not enabled in {fw.trusted_zone}"
        return not missing, f"missing sources: {', '.join(missing)}" if missing else ""

    check("sshd permitrootlogin is no", root_login)
    check(f"{fw.service} removed from zone {fw.public_zone}", public_zone)
    check(f"{fw.service} restricted to allow-listed sources", internal_sources)

    for user in (resolved.new_username, resolved.admin_user):
        def in_sudo(user=user):
            groups = ctx.sudo_checked(shlex.join(["id", "-nG", user])).split()
            return "sudo" in groups, " ".join(groups)

        def sudoers(user=user):
            path = f"{SUDOERS_DIR}/{user}"
            st = files.stat(ctx, path)
            if st is None:
                return False, f"{path} missing"
            content = ctx.runner.read_text(path, sudo=True) or ""
            line_ok = resolved.sudoers_line(user) in content.splitlines()
            mode_ok = st.mode == 0o440
            return line_ok and mode_ok, f"mode {st.mode:04o}" + ("" if line_ok else ", grant line missing")

        check(f"{user} is in sudo", in_sudo)
        check(f"sudoers drop-in for {user}", sudoers)

    def password_set():
        out = ctx.sudo_checked(shlex.join(["getent", "shadow", resolved.new_username]))
        field = out.strip().split(":")[1] if ":" in out else ""
        return field not in ("", "*", "!", "!!"), ""

    def sole_key():
        path = f"/home/{resolved.admin_user}/.ssh/authorized_keys"
        content = ctx.runner.read_text(path, sudo=True)
        if content is None:
            return False, f"{path} missing"
        keys = [k for k in content.splitlines() if k.strip() and not k.startswith("#")]
        return keys == [resolved.admin_public_key], f"{len(keys)} key(s) present"

    check(f"{resolved.new_username} has a password hash", password_set)
    check(f"{resolved.admin_user} has exactly the controller key", sole_key)
    return findings


def verify_hosts(
    hosts: Iterable[TargetHost],
    resolved: ResolvedConfig,
    observers: Optional[List] = None,
    *,
    connect: Optional[Callable[[TargetHost], Any]] = None,
    run_id: Optional[str] = None,
) -> Dict[str, List[Finding]]:
    """
    Audit each host in turn. An unreachable host yields a single failed
    finding instead of aborting the audit of the others.
    """
    connect = connect or wait_for_ssh
    bus = EventBus(observers or [])
    run_ctx = new_ctx(run_id)
    results: Dict[str, List[Finding]] = {}

    for host in hosts:
        try:
            runner = connect(host)
        except HostUnreachableError as e:
            bus.emit(HostUnreachable(host=host.hostname, error=str(e), **stamp(run_ctx)))
            results[host.hostname] = [Finding("host reachable", False, str(e))]
            continue

        ctx = HostContext(host=host, runner=runner)
        try:
            findings = verify_host(ctx, resolved)
        finally:
            ctx.runner.close()

        for f in findings:
            bus.emit(
                VerifyFinding(host=host.hostname, check=f.check, ok=f.ok, detail=f.detail, **stamp(run_ctx))
            )
        log.info(
            "[%s] %d/%d checks passed",
            host.hostname, sum(1 for f in findings if f.ok), len(findings),
        )
        results[host.hostname] = findings
    return results
