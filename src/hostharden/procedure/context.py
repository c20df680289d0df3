# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/procedure/context.py

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from hostharden.errors import TaskError
from hostharden.inventory import TargetHost


@dataclass
class HostContext:
    """
    Per-host execution state passed explicitly through every task.

    ``runner`` is an SSHRunner (or anything with the same run/read_text/
    put_text/temp_path/close surface). ``reconnect`` opens a fresh runner
    for the same host and is only needed by the reboot task.
    """

    host: TargetHost
    runner: Any
    dry_run: bool = False
    reconnect: Optional[Callable[[], Any]] = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    @property
    def hostname(self) -> str:
        return self.host.hostname

    def sudo(
        self,
        cmd: str,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> Tuple[int, str, str]:
        return self.runner.run(cmd, sudo=True, env=env, timeout=timeout)

    def sudo_checked(
        self,
        cmd: str,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> str:
        rc, out, err = self.sudo(cmd, env=env, timeout=timeout)
        if rc != 0:
            raise TaskError(f"`{cmd}` failed (rc={rc}): {(err or out).strip()}")
        return out
