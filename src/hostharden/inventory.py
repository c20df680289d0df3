# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/inventory.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

log = logging.getLogger("hostharden")


@dataclass
class TargetHost:
    """
    Represents a server the procedure will SSH into.
    """
    hostname: str                 # inventory name, used to tag logs and reports
    address: str                  # IP or DNS to connect
    username: str = "root"        # SSH username (must be root or hold sudo)
    port: int = 22
    password: Optional[str] = None
    pkey_path: Optional[Path] = None


def read_hosts_from_inventory(
    inv_path: Path,
    group: str = "targets",
    *,
    default_user: str = "root",
    default_key: Optional[Path] = None,
) -> List[TargetHost]:
    """
    Parse an Ansible-style INI inventory and return the hosts of one group.

        [targets]
        web-1 ansible_host=10.0.0.11 ansible_user=ubuntu
        web-2 ansible_host=10.0.0.12 ansible_port=2222

    Lines without ``ansible_host`` use the inventory name as the address.
    ``[group:vars]`` sections provide defaults for the group.
    """
    if not inv_path.exists():
        raise FileNotFoundError(f"Inventory not found: {inv_path}")

    header = f"[{group}]"
    vars_header = f"[{group}:vars]"
    section = None
    group_vars: dict = {}
    rows: List[tuple] = []

    for raw in inv_path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith(";"):
            continue
        if line.startswith("[") and line.endswith("]"):
            section = "hosts" if line == header else "vars" if line == vars_header else None
            continue
        if section == "vars":
            key, _, value = line.partition("=")
            group_vars[key.strip()] = value.strip()
        elif section == "hosts":
            parts = line.split()
            host_vars = dict(p.split("=", 1) for p in parts[1:] if "=" in p)
            rows.append((parts[0], host_vars))

    hosts: List[TargetHost] = []
    for name, host_vars in rows:
        merged = {**group_vars, **host_vars}
        key = merged.get("ansible_ssh_private_key_file")
        hosts.append(
            TargetHost(
                hostname=name,
                address=merged.get("ansible_host", name),
                username=merged.get("ansible_user", default_user),
                port=int(merged.get("ansible_port", 22)),
                password=merged.get("ansible_password"),
                pkey_path=Path(key).expanduser() if key else default_key,
            )
        )

    log.debug("inventory %s group=%s hosts=%s", inv_path, group, [h.hostname for h in hosts])
    return hosts


def limit_hosts(hosts: Iterable[TargetHost], limit: Optional[str]) -> List[TargetHost]:
    """Keep only hosts named in a comma separated --limit value."""
    hosts = list(hosts)
    if not limit:
        return hosts
    wanted = {h.strip() for h in limit.split(",") if h.strip()}
    unknown = wanted - {h.hostname for h in hosts}
    if unknown:
        raise ValueError(f"Unknown hosts in --limit: {', '.join(sorted(unknown))}")
    return [h for h in hosts if h.hostname in wanted]
