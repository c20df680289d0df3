# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/procedure/hardening.py

from __future__ import annotations

from functools import partial
from typing import Iterable, List, Optional, Set, Tuple

from hostharden.config.models import ResolvedConfig
from hostharden.tasks import apt, files, firewalld, reboot, systemd, users

from .runner import Handler, Task

PHASES: Tuple[str, ...] = ("patch", "services", "users", "admin", "ssh", "firewall", "banners")

RESTART_SSH = "restart ssh"

SUDOERS_DIR = "/etc/sudoers.d"
VISUDO_CHECK = "visudo -cf %s"
SSHD_CHECK = "sshd -t -f %s"


def resolve_tags(tags: Optional[Iterable[str]]) -> Set[str]:
    """
    No tags means every phase. Unknown names are rejected rather than
    silently selecting nothing.
    """
    if not tags:
        return set(PHASES)
    selected = {t.strip() for t in tags if t.strip()}
    if "all" in selected:
        return set(PHASES)
    unknown = selected - set(PHASES)
    if unknown:
        raise ValueError(
            f"Unknown tags: {', '.join(sorted(unknown))}. Valid tags: {', '.join(PHASES)}"
        )
    return selected


def _sudoers_task(resolved: ResolvedConfig, user: str, phase: str) -> Task:
    return Task(
        f"Grant passwordless sudo to {user}",
        phase,
        partial(
            files.copy_content,
            path=f"{SUDOERS_DIR}/{user}",
            content=resolved.sudoers_line(user) + "\n",
            owner="root",
            group="root",
            mode=0o440,
            validate=VISUDO_CHECK,
        ),
    )


def _patch(resolved: ResolvedConfig) -> List[Task]:
    return [
        Task("Update package index and upgrade all packages", "patch", apt.upgrade_dist),
        Task("Reboot after patching", "patch", partial(reboot.reboot, spec=resolved.reboot)),
    ]


def _services(resolved: ResolvedConfig) -> List[Task]:
    return [
        Task(
            f"Disable unused service {unit}",
            "services",
            partial(systemd.service_disabled, unit=unit),
            ignore_errors=True,
        )
        for unit in resolved.disabled_services
    ]


def _users(resolved: ResolvedConfig) -> List[Task]:
    user = resolved.new_username
    return [
        Task(
            f"Create user {user}",
            "users",
            partial(
                users.user_present,
                name=user,
                groups=("sudo",),
                password_hash=resolved.user_password_hash,
            ),
        ),
        _sudoers_task(resolved, user, "users"),
    ]


def _admin(resolved: ResolvedConfig) -> List[Task]:
    user = resolved.admin_user
    group = resolved.admin_group
    ssh_dir = f"/home/{user}/.ssh"
    return [
        Task(f"Ensure group {group} exists", "admin", partial(users.group_present, name=group)),
        Task(
            f"Create user {user}",
            "admin",
            partial(users.user_present, name=user, groups=("sudo", group)),
        ),
        Task(
            f"Create {ssh_dir}",
            "admin",
            partial(files.directory, path=ssh_dir, owner=user, group=user, mode=0o700),
        ),
        Task(
            f"Install authorized key for {user}",
            "admin",
            partial(
                files.copy_content,
                path=f"{ssh_dir}/authorized_keys",
                content=resolved.admin_public_key + "\n",
                owner=user,
                group=user,
                mode=0o600,
            ),
        ),
        _sudoers_task(resolved, user, "admin"),
    ]


def _ssh(resolved: ResolvedConfig) -> List[Task]:
    sshd = resolved.sshd
    return [
        Task(
            "Disable root login over SSH",
            "ssh",
            partial(
                files.line_in_file,
                path=sshd.config_path,
                regexp=r"^PermitRootLogin",
                line="PermitRootLogin no",
                backup=True,
            ),
            notify=(RESTART_SSH,),
        ),
        Task(
            "Install hardened sshd_config",
            "ssh",
            partial(
                files.copy_content,
                path=sshd.config_path,
                content=resolved.sshd_config_content,
                owner="root",
                group="root",
                mode=0o600,
                validate=SSHD_CHECK,
                backup=True,
            ),
            notify=(RESTART_SSH,),
        ),
        Task(
            "Configure SSH login banner",
            "ssh",
            partial(
                files.line_in_file,
                path=sshd.config_path,
                regexp=r"^Banner",
                line=f"Banner {sshd.banner_path}",
                backup=True,
            ),
            notify=(RESTART_SSH,),
        ),
    ]


def _firewall(resolved: ResolvedConfig) -> List[Task]:
    fw = resolved.firewall
    tasks = [
        Task(f"Install {fw.package}", "firewall", partial(apt.package_present, name=fw.package)),
        Task(
            f"Enable and start {fw.package}",
            "firewall",
            partial(systemd.service_enabled, unit=fw.package),
        ),
        Task(
            f"Allow {fw.service} in zone {fw.trusted_zone}",
            "firewall",
            partial(firewalld.service_in_zone, service=fw.service, zone=fw.trusted_zone, enabled=True),
        ),
        Task(
            f"Remove {fw.service} from zone {fw.public_zone}",
            "firewall",
            partial(firewalld.service_in_zone, service=fw.service, zone=fw.public_zone, enabled=False),
        ),
    ]
    tasks += [
        Task(
            f"Allow SSH from {cidr}",
            "firewall",
            partial(firewalld.source_in_zone, source=cidr, zone=fw.trusted_zone),
        )
        for cidr in resolved.allowed_ssh_networks
    ]
    return tasks


def _banners(resolved: ResolvedConfig) -> List[Task]:
    return [
        Task(
            "Install login warning banner",
            "banners",
            partial(
                files.copy_content,
                path=resolved.sshd.banner_path,
                content=resolved.issue_net_content,
                owner="root",
                group="root",
                mode=0o644,
            ),
        ),
        Task(
            "Install message of the day",
            "banners",
            partial(
                files.copy_content,
                path=resolved.motd_path,
                content=resolved.motd_content,
                owner="root",
                group="root",
                mode=0o644,
            ),
        ),
    ]


_BUILDERS = {
    "patch": _patch,
    "services": _services,
    "users": _users,
    "admin": _admin,
    "ssh": _ssh,
    "firewall": _firewall,
    "banners": _banners,
}


def build_procedure(
    resolved: ResolvedConfig,
    tags: Optional[Iterable[str]] = None,
) -> Tuple[List[Task], List[Handler]]:
    """
    The ordered hardening task list plus its handlers. Phase order is fixed;
    *tags* only filters which phases are included.
    """
    selected = resolve_tags(tags)
    tasks: List[Task] = []
    for phase in PHASES:
        if phase in selected:
            tasks.extend(_BUILDERS[phase](resolved))

    handlers = [
        Handler(RESTART_SSH, partial(systemd.restart, unit=resolved.sshd.service)),
    ]
    return tasks, handlers
