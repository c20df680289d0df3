# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from hostharden.errors import ConfigError, PreconditionError
from hostharden.template_renderer import TemplateRenderer

from .models import DEFAULT_USER_PASSWORD, HardeningConfig, ResolvedConfig
from .secrets import hash_password, is_crypt_hash, salt_file_path, stored_salt

log = logging.getLogger("hostharden")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. HOSTHARDEN_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the config
    """
    env = os.environ.get("HOSTHARDEN_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("HOSTHARDEN_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def load_config(path: str | Path) -> HardeningConfig:
    """
    Load and validate a hardening YAML config.

    Secrets (typically ``user_password``) can live in a sibling
    ``secrets.yaml`` or the file named by ``HOSTHARDEN_SECRETS_FILE``; it is
    deep-merged before validation. ``${ENV_VAR}`` placeholders are expanded
    in both files.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _deep_merge(data, _load_yaml(secrets_path))
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    try:
        return HardeningConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e


def read_public_key(path: Path) -> str:
    """
    Read the controller-side public key. No fallback: a missing key stops
    the run before any target is touched.
    """
    key_path = Path(path).expanduser()
    try:
        key = key_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError as e:
        raise PreconditionError(f"Public key file not found: {key_path}") from e
    except OSError as e:
        raise PreconditionError(f"Cannot read public key {key_path}: {e}") from e
    if not key or "\n" in key:
        raise PreconditionError(f"{key_path} must contain exactly one public key")
    return key


def resolve_config(cfg: HardeningConfig, renderer: TemplateRenderer | None = None) -> ResolvedConfig:
    """
    Evaluate every derived value once: password hash, controller key and
    rendered file contents.
    """
    renderer = renderer or TemplateRenderer()

    if cfg.user_password == DEFAULT_USER_PASSWORD:
        log.warning(
            "user_password is the built-in default; override it (e.g. in secrets.yaml) "
            "for any real deployment"
        )

    if is_crypt_hash(cfg.user_password):
        password_hash = cfg.user_password
    else:
        salt = cfg.password_salt or stored_salt(salt_file_path(cfg.salt_file), cfg.new_username)
        password_hash = hash_password(cfg.user_password, salt=salt)

    public_key = read_public_key(cfg.local_public_key_path)

    sshd_config = renderer.render(
        cfg.sshd.template,
        {
            "port": cfg.sshd.port,
            "banner_path": cfg.sshd.banner_path,
            "password_authentication": cfg.sshd.password_authentication,
            "allow_users": [cfg.new_username, cfg.admin_user],
        },
    )

    issue_net = cfg.banners.issue_net if cfg.banners.issue_net is not None else renderer.read("issue.net")
    motd = cfg.banners.motd if cfg.banners.motd is not None else renderer.read("motd")

    return ResolvedConfig(
        new_username=cfg.new_username,
        admin_user=cfg.admin_user,
        admin_group=cfg.admin_group,
        user_password_hash=password_hash,
        admin_public_key=public_key,
        allowed_ssh_networks=tuple(cfg.allowed_ssh_networks),
        disabled_services=tuple(cfg.disabled_services),
        reboot=cfg.reboot,
        sshd=cfg.sshd,
        firewall=cfg.firewall,
        sshd_config_content=sshd_config,
        issue_net_content=_ensure_newline(issue_net),
        motd_content=_ensure_newline(motd),
        motd_path=cfg.banners.motd_path,
    )


def _ensure_newline(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"
