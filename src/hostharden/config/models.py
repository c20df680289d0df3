# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/config/models.py

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

DEFAULT_USER_PASSWORD = "ChangeMe!2026"

_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
CRYPT_HASH_RE = re.compile(r"^\$(1|2[abxy]|5|6|y|gy)\$[^$\s:]+\$[^\s:]+$")
SALT_RE = re.compile(r"[./0-9A-Za-z]{1,16}")


class RebootSpec(BaseModel):
    """Reboot after patching. Delays and timeout are in seconds."""

    policy: Literal["always", "if-required"] = "always"
    pre_reboot_delay: int = Field(10, ge=0)
    post_reboot_delay: int = Field(30, ge=0)
    reboot_timeout: int = Field(600, gt=0)


class SshdSpec(BaseModel):
    config_path: str = "/etc/ssh/sshd_config"
    template: str = "sshd_config.j2"
    service: str = "ssh"                  # systemd unit on Debian/Ubuntu
    port: int = Field(22, gt=0, lt=65536)
    password_authentication: bool = True  # new_username logs in with a password
    banner_path: str = "/etc/issue.net"


class FirewallSpec(BaseModel):
    trusted_zone: str = "internal"
    public_zone: str = "public"
    service: str = "ssh"
    package: str = "firewalld"


class BannerSpec(BaseModel):
    # inline text overrides the packaged files
    issue_net: Optional[str] = None
    motd: Optional[str] = None
    motd_path: str = "/etc/motd"


class HardeningConfig(BaseModel):
    new_username: str = "secureadmin"
    admin_user: str = "admin"
    admin_group: str = "admin"
    user_password: str = DEFAULT_USER_PASSWORD
    password_salt: Optional[str] = None
    salt_file: Optional[Path] = None
    local_public_key_path: Path = Path("~/.ssh/id_rsa.pub")
    allowed_ssh_networks: List[str] = Field(
        default_factory=lambda: ["192.168.1.0/24", "203.0.113.42/32"]
    )
    disabled_services: List[str] = Field(
        default_factory=lambda: ["cups", "avahi-daemon", "snapd", "bluetooth", "rpcbind"]
    )
    reboot: RebootSpec = RebootSpec()
    sshd: SshdSpec = SshdSpec()
    firewall: FirewallSpec = FirewallSpec()
    banners: BannerSpec = BannerSpec()
    forks: int = Field(5, ge=1)

    @field_validator("new_username", "admin_user", "admin_group")
    @classmethod
    def _valid_name(cls, v: str) -> str:
        if not _USERNAME_RE.match(v):
            raise ValueError(f"invalid user/group name: {v!r}")
        return v

    @field_validator("allowed_ssh_networks")
    @classmethod
    def _valid_networks(cls, v: List[str]) -> List[str]:
        seen: List[str] = []
        for cidr in v:
            try:
                ipaddress.ip_network(cidr, strict=True)
            except ValueError as e:
                raise ValueError(f"invalid CIDR {cidr!r}: {e}") from e
            if cidr not in seen:
                seen.append(cidr)
        if not seen:
            raise ValueError("allowed_ssh_networks must not be empty")
        return seen

    @field_validator("password_salt")
    @classmethod
    def _valid_salt(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not SALT_RE.fullmatch(v):
            raise ValueError("password_salt must be 1-16 chars of [./0-9A-Za-z]")
        return v


@dataclass(frozen=True)
class ResolvedConfig:
    """
    Every value the procedure needs, evaluated once before any host is
    contacted. Shared read-only across all per-host runs.
    """
    new_username: str
    admin_user: str
    admin_group: str
    user_password_hash: str
    admin_public_key: str
    allowed_ssh_networks: Tuple[str, ...]
    disabled_services: Tuple[str, ...]
    reboot: RebootSpec
    sshd: SshdSpec
    firewall: FirewallSpec
    sshd_config_content: str
    issue_net_content: str
    motd_content: str
    motd_path: str = "/etc/motd"

    def __post_init__(self) -> None:
        if not CRYPT_HASH_RE.match(self.user_password_hash):
            raise ValueError("user_password_hash must be a crypt(3) hash, never plaintext")

    def sudoers_line(self, user: str) -> str:
        return f"{user} ALL=(ALL) NOPASSWD:ALL"
