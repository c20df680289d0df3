# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/reboot.py

from __future__ import annotations

import logging
import shlex

import paramiko

from hostharden.config.models import RebootSpec
from hostharden.errors import HostUnreachableError, RebootTimeoutError, TaskError
from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

log = logging.getLogger("hostharden")

BOOT_ID_PATH = "/proc/sys/kernel/random/boot_id"
REBOOT_REQUIRED_PATH = "/var/run/reboot-required"
POLL_INTERVAL = 5

_CONNECTION_ERRORS = (OSError, EOFError, paramiko.SSHException, HostUnreachableError)


def _boot_id(runner) -> str:
    return (runner.read_text(BOOT_ID_PATH) or "").strip()


def reboot(ctx: HostContext, spec: RebootSpec) -> TaskResult:
    """
    Reboot and block until the host answers again with a new boot id.

    Timeline: wait ``pre_reboot_delay``, issue the reboot, wait
    ``post_reboot_delay``, then poll until ``reboot_timeout`` (counted from
    the reboot command) expires.
    """
    if spec.policy == "if-required":
        rc, _, _ = ctx.sudo(shlex.join(["test", "-e", REBOOT_REQUIRED_PATH]))
        if rc != 0:
            return ok("no reboot required")

    if ctx.dry_run:
        return changed("host would be rebooted")
    if ctx.reconnect is None:
        raise TaskError("reboot needs a reconnect factory on the host context")

    before = _boot_id(ctx.runner)
    if spec.pre_reboot_delay:
        ctx.sleep(spec.pre_reboot_delay)

    started = ctx.clock()
    log.info("[%s] rebooting", ctx.hostname)
    try:
        ctx.sudo('shutdown -r now "Reboot initiated by hostharden"')
    except _CONNECTION_ERRORS as e:
        # sshd may go down before the exit status makes it back
        log.debug("[%s] connection dropped during reboot: %s", ctx.hostname, e)
    try:
        ctx.runner.close()
    except _CONNECTION_ERRORS as e:
        log.debug("[%s] closing stale connection: %s", ctx.hostname, e)

    if spec.post_reboot_delay:
        ctx.sleep(spec.post_reboot_delay)

    deadline = started + spec.reboot_timeout
    while True:
        try:
            runner = ctx.reconnect()
            after = _boot_id(runner)
            if after and after != before:
                ctx.runner = runner
                break
            runner.close()
        except _CONNECTION_ERRORS as e:
            log.debug("[%s] not back yet: %s", ctx.hostname, e)
        if ctx.clock() >= deadline:
            raise RebootTimeoutError(
                f"{ctx.hostname} did not come back within {spec.reboot_timeout}s"
            )
        ctx.sleep(POLL_INTERVAL)

    return changed(f"rebooted in {int(ctx.clock() - started)}s")
