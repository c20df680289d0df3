# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/utils/ssh_runner.py

from __future__ import annotations

import itertools
import logging
import os
import shlex
from typing import Dict, Optional, Tuple

import paramiko

log = logging.getLogger("hostharden")

_counter = itertools.count(1)


class SSHCommandError(RuntimeError):
    def __init__(self, cmd: str, rc: int, err: str):
        super().__init__(f"command failed (rc={rc}): {cmd}\n{err.strip()}")
        self.cmd = cmd
        self.rc = rc
        self.err = err


class SSHRunner:
    """
    Thin command/file layer over a connected paramiko client.

    All privileged commands go through ``sudo -n`` so a missing NOPASSWD
    grant fails fast instead of hanging on a password prompt.
    """

    def __init__(self, client: paramiko.SSHClient, *, hostname: str = "unknown"):
        self.client = client
        self.hostname = hostname

    def run(
        self,
        cmd: str,
        *,
        sudo: bool = False,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> Tuple[int, str, str]:
        shell_cmd = cmd
        if env:
            exports = " ".join(f"{k}={shlex.quote(str(v))}" for k, v in env.items())
            shell_cmd = f"{exports} {cmd}"

        if sudo:
            final = f"sudo -n -H bash -c {shlex.quote(shell_cmd)}"
        else:
            final = f"bash -c {shlex.quote(shell_cmd)}"

        log.debug("(%s) $ %s", self.hostname, final)
        stdin, stdout, stderr = self.client.exec_command(final, timeout=timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if out.strip():
            log.debug("(%s) [stdout] %s", self.hostname, out.rstrip())
        if err.strip():
            log.debug("(%s) [stderr] %s", self.hostname, err.rstrip())
        log.debug("(%s) [exit %d]", self.hostname, rc)
        return rc, out, err

    def run_checked(self, cmd: str, **kwargs) -> str:
        rc, out, err = self.run(cmd, **kwargs)
        if rc != 0:
            raise SSHCommandError(cmd, rc, err)
        return out

    def read_text(self, remote_path: str, *, sudo: bool = False) -> Optional[str]:
        """Return the file content, or None when it does not exist."""
        cmd = shlex.join(["cat", "--", remote_path])
        rc, out, err = self.run(cmd, sudo=sudo)
        if rc == 0:
            return out
        if "No such file" in err:
            return None
        raise SSHCommandError(cmd, rc, err)

    def temp_path(self) -> str:
        return f"/tmp/.hostharden.tmp.{os.getpid()}.{next(_counter)}"

    def put_text(self, content: str, remote_path: str, *, sudo: bool = False) -> None:
        if sudo:
            tmp = self.temp_path()
            self.put_text(content, tmp)
            self.run_checked(shlex.join(["mv", "-f", tmp, remote_path]), sudo=True)
            return

        sftp = self.client.open_sftp()
        try:
            with sftp.open(remote_path, "w") as f:
                f.write(content)
        finally:
            sftp.close()

    def close(self) -> None:
        self.client.close()
