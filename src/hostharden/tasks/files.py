# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/files.py

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from hostharden.errors import TaskError
from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

log = logging.getLogger("hostharden")


@dataclass(frozen=True)
class FileStat:
    owner: str
    group: str
    mode: int


def stat(ctx: HostContext, path: str) -> Optional[FileStat]:
    rc, out, err = ctx.sudo(shlex.join(["stat", "-c", "%U:%G:%a", path]))
    if rc != 0:
        if "No such file" in err:
            return None
        raise TaskError(f"stat {path} failed: {err.strip()}")
    owner, group, mode = out.strip().split(":")
    return FileStat(owner, group, int(mode, 8))


def backup_name(path: str, now: Optional[datetime] = None) -> str:
    """`/etc/ssh/sshd_config.4711.2026-10-19@08:15:02~`"""
    now = now or datetime.now()
    return f"{path}.{os.getpid()}.{now.strftime('%Y-%m-%d@%H:%M:%S')}~"


def upsert_line(content: str, regexp: str, line: str) -> Tuple[str, bool]:
    """
    Replace the first line matching *regexp* with *line*, or append *line*
    when nothing matches. Returns (new_content, changed).
    """
    pattern = re.compile(regexp)
    lines = content.splitlines()
    for i, existing in enumerate(lines):
        if pattern.search(existing):
            if existing == line:
                return content, False
            lines[i] = line
            break
    else:
        lines.append(line)
    return "\n".join(lines) + "\n", True


def _backup(ctx: HostContext, path: str) -> str:
    base = backup_name(path)
    dest, n = base, 0
    # two patches within the same second must not overwrite the first backup
    while ctx.sudo(shlex.join(["test", "-e", dest]))[0] == 0:
        n += 1
        dest = f"{base[:-1]}.{n}~"
    ctx.sudo_checked(shlex.join(["cp", "-p", path, dest]))
    log.debug("[%s] backed up %s to %s", ctx.hostname, path, dest)
    return dest


def _install(
    ctx: HostContext,
    content: str,
    path: str,
    owner: str,
    group: str,
    mode: int,
    validate: Optional[str] = None,
) -> None:
    """
    Stage content in a temp file, fix ownership and mode, validate it, then
    move it over the target so the target is never half-written.
    """
    tmp = ctx.runner.temp_path()
    moved = False
    try:
        ctx.runner.put_text(content, tmp)
        ctx.sudo_checked(shlex.join(["chown", f"{owner}:{group}", tmp]))
        ctx.sudo_checked(shlex.join(["chmod", f"{mode:04o}", tmp]))
        if validate:
            cmd = validate.replace("%s", shlex.quote(tmp))
            rc, out, err = ctx.sudo(cmd)
            if rc != 0:
                raise TaskError(f"validation `{cmd}` rejected {path}: {(err or out).strip()}")
        ctx.sudo_checked(shlex.join(["mv", "-f", tmp, path]))
        moved = True
    finally:
        if not moved:
            ctx.sudo(shlex.join(["rm", "-f", tmp]))


def copy_content(
    ctx: HostContext,
    path: str,
    content: str,
    *,
    owner: str = "root",
    group: str = "root",
    mode: int = 0o644,
    validate: Optional[str] = None,
    backup: bool = False,
) -> TaskResult:
    """Converge a whole file: content, owner, group and mode."""
    current = ctx.runner.read_text(path, sudo=True)
    desired = FileStat(owner, group, mode)

    if current == content:
        st = stat(ctx, path)
        if st == desired:
            return ok(f"{path} up to date")
        if ctx.dry_run:
            return changed(f"{path} attributes would change")
        ctx.sudo_checked(shlex.join(["chown", f"{owner}:{group}", path]))
        ctx.sudo_checked(shlex.join(["chmod", f"{mode:04o}", path]))
        return changed(f"{path} attributes set to {owner}:{group} {mode:04o}")

    if ctx.dry_run:
        return changed(f"{path} would be written")

    msg = f"{path} written"
    if backup and current is not None:
        msg += f" (backup {_backup(ctx, path)})"
    _install(ctx, content, path, owner, group, mode, validate=validate)
    return changed(msg)


def directory(
    ctx: HostContext,
    path: str,
    *,
    owner: str = "root",
    group: str = "root",
    mode: int = 0o755,
) -> TaskResult:
    st = stat(ctx, path)
    if st == FileStat(owner, group, mode):
        return ok(f"{path} present")
    if ctx.dry_run:
        return changed(f"{path} would be created or fixed")
    ctx.sudo_checked(
        shlex.join(["install", "-d", "-m", f"{mode:04o}", "-o", owner, "-g", group, path])
    )
    return changed(f"{path} {'created' if st is None else 'fixed'}")


def line_in_file(
    ctx: HostContext,
    path: str,
    *,
    regexp: str,
    line: str,
    backup: bool = True,
    create: bool = True,
    owner: str = "root",
    group: str = "root",
    mode: int = 0o644,
) -> TaskResult:
    """
    Regex-anchored line upsert. The file keeps its existing owner and mode;
    *owner*/*group*/*mode* only apply when the file has to be created.
    """
    current = ctx.runner.read_text(path, sudo=True)
    if current is None and not create:
        raise TaskError(f"{path} does not exist")

    new, is_changed = upsert_line(current or "", regexp, line)
    if not is_changed:
        return ok(f"{line!r} present in {path}")
    if ctx.dry_run:
        return changed(f"{line!r} would be set in {path}")

    msg = f"{line!r} set in {path}"
    st = stat(ctx, path) if current is not None else None
    if st is not None:
        owner, group, mode = st.owner, st.group, st.mode
        if backup:
            msg += f" (backup {_backup(ctx, path)})"
    _install(ctx, new, path, owner, group, mode)
    return changed(msg)
