# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one state assertion."""

    changed: bool
    msg: str = ""


def ok(msg: str = "") -> TaskResult:
    return TaskResult(changed=False, msg=msg)


def changed(msg: str = "") -> TaskResult:
    return TaskResult(changed=True, msg=msg)
