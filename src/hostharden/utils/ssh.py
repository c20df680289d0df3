# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import time
from typing import Callable

import paramiko

from hostharden.errors import HostUnreachableError
from hostharden.inventory import TargetHost
from hostharden.utils.retry import RetryError, retry
from hostharden.utils.ssh_runner import SSHRunner

log = logging.getLogger("hostharden")


def open_ssh(
    host: TargetHost,
    *,
    connect_timeout: float = 20.0,
) -> SSHRunner:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = None
    if host.pkey_path:
        for key_cls in (
            paramiko.RSAKey,
            paramiko.Ed25519Key,
            paramiko.ECDSAKey,
        ):
            try:
                pkey = key_cls.from_private_key_file(str(host.pkey_path))
                break
            except paramiko.SSHException:
                continue

    client.connect(
        hostname=host.address,
        port=host.port,
        username=host.username,
        password=host.password if not pkey else None,
        pkey=pkey,
        timeout=connect_timeout,
        allow_agent=True,
        look_for_keys=pkey is None,
    )

    return SSHRunner(client, hostname=host.hostname)


def wait_for_ssh(
    host: TargetHost,
    *,
    attempts: int = 3,
    delay: float = 5.0,
    connect_timeout: float = 20.0,
    sleep: Callable[[float], None] = time.sleep,
) -> SSHRunner:
    """
    Connect with a bounded number of attempts; freshly provisioned hosts
    often refuse the first connection while sshd is still starting.
    """

    def _log_retry(attempt: int, exc: Exception) -> None:
        log.info(
            "[%s] SSH not ready (attempt %d/%d, %s: %s)",
            host.hostname, attempt, attempts, type(exc).__name__, exc,
        )

    @retry(
        retries=attempts,
        delay=delay,
        retry_on=(paramiko.SSHException, OSError),
        on_retry=_log_retry,
        sleep=sleep,
    )
    def _connect() -> SSHRunner:
        return open_ssh(host, connect_timeout=connect_timeout)

    try:
        return _connect()
    except RetryError as e:
        raise HostUnreachableError(
            f"Failed to SSH into {host.address}:{host.port} as '{host.username}': {e.__cause__}"
        ) from e
