# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/tasks/users.py

from __future__ import annotations

import shlex
from typing import Iterable, List, Optional, Sequence

from hostharden.errors import TaskError
from hostharden.procedure.context import HostContext

from .base import TaskResult, changed, ok

# getent exits 2 when the key is not in the database
_GETENT_MISSING = 2


def _getent(ctx: HostContext, database: str, key: str) -> Optional[List[str]]:
    rc, out, err = ctx.sudo(shlex.join(["getent", database, key]))
    if rc == _GETENT_MISSING:
        return None
    if rc != 0:
        raise TaskError(f"getent {database} {key} failed (rc={rc}): {err.strip()}")
    return out.strip().split(":")


def missing_groups(current: Iterable[str], desired: Iterable[str]) -> List[str]:
    have = set(current)
    return [g for g in desired if g not in have]


def group_present(ctx: HostContext, name: str) -> TaskResult:
    if _getent(ctx, "group", name) is not None:
        return ok(f"group {name} present")
    if ctx.dry_run:
        return changed(f"group {name} would be created")
    ctx.sudo_checked(shlex.join(["groupadd", name]))
    return changed(f"group {name} created")


def user_present(
    ctx: HostContext,
    name: str,
    *,
    groups: Sequence[str] = (),
    password_hash: Optional[str] = None,
    shell: Optional[str] = None,
) -> TaskResult:
    """
    Ensure the account exists. Supplementary groups are appended, never
    replaced; the password is only reset when the stored hash differs.
    """
    entry = _getent(ctx, "passwd", name)

    if entry is None:
        if ctx.dry_run:
            return changed(f"user {name} would be created")
        cmd = ["useradd", "-m"]
        if _getent(ctx, "group", name) is not None:
            # useradd refuses to create a user group that already exists
            cmd += ["-g", name]
        if shell:
            cmd += ["-s", shell]
        if groups:
            cmd += ["-G", ",".join(groups)]
        if password_hash:
            cmd += ["-p", password_hash]
        ctx.sudo_checked(shlex.join(cmd + [name]))
        return changed(f"user {name} created")

    changes: List[str] = []

    current_groups = ctx.sudo_checked(shlex.join(["id", "-nG", name])).split()
    add = missing_groups(current_groups, groups)
    if add:
        changes.append(f"added to {','.join(add)}")
        if not ctx.dry_run:
            ctx.sudo_checked(shlex.join(["usermod", "-a", "-G", ",".join(add), name]))

    if shell and entry[6] != shell:
        changes.append(f"shell {entry[6]} -> {shell}")
        if not ctx.dry_run:
            ctx.sudo_checked(shlex.join(["usermod", "-s", shell, name]))

    if password_hash:
        shadow = _getent(ctx, "shadow", name)
        if shadow is None or shadow[1] != password_hash:
            changes.append("password updated")
            if not ctx.dry_run:
                ctx.sudo_checked(shlex.join(["usermod", "-p", password_hash, name]))

    if not changes:
        return ok(f"user {name} present")
    return changed(f"user {name}: {'; '.join(changes)}")
