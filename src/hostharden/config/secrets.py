# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/config/secrets.py

from __future__ import annotations

import logging
import os
import random
from pathlib import Path
from typing import Optional

import yaml
from passlib.hash import sha512_crypt

from hostharden.errors import ConfigError, PreconditionError

from .models import CRYPT_HASH_RE, SALT_RE

log = logging.getLogger("hostharden")

# glibc's implicit round count; keeps the hash in the plain "$6$salt$digest" form
_ROUNDS = 5000

SALT_CHARS = "./0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
SALT_LENGTH = 16

DEFAULT_SALT_FILE = Path.home() / ".hostharden" / "salts.yaml"

_rng = random.SystemRandom()


def is_crypt_hash(value: str) -> bool:
    return bool(CRYPT_HASH_RE.match(value))


def generate_salt() -> str:
    return "".join(_rng.choice(SALT_CHARS) for _ in range(SALT_LENGTH))


def salt_file_path(override: Optional[Path] = None) -> Path:
    """
    Locate the controller-side salt store:

    1. ``salt_file`` from the config
    2. HOSTHARDEN_SALT_FILE environment variable
    3. ~/.hostharden/salts.yaml
    """
    if override is not None:
        return Path(override).expanduser()
    env = os.environ.get("HOSTHARDEN_SALT_FILE")
    if env:
        return Path(env).expanduser()
    return DEFAULT_SALT_FILE


def stored_salt(store: Path, username: str) -> str:
    """
    Random per-user salt, generated on first use and kept on the controller
    so reruns reproduce the same hash. It never depends on the password.
    """
    salts: dict = {}
    if store.is_file():
        try:
            salts = yaml.safe_load(store.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{store}: invalid YAML: {e}") from e
        if not isinstance(salts, dict):
            raise ConfigError(f"{store}: top level must be a mapping")

    salt = salts.get(username)
    if salt is not None:
        if not isinstance(salt, str) or not SALT_RE.fullmatch(salt):
            raise ConfigError(f"{store}: salt for {username} must be 1-16 chars of [./0-9A-Za-z]")
        return salt

    salt = generate_salt()
    salts[username] = salt
    try:
        store.parent.mkdir(parents=True, exist_ok=True)
        store.write_text(yaml.safe_dump(salts, default_flow_style=False))
        store.chmod(0o600)
    except OSError as e:
        raise PreconditionError(f"Cannot write salt store {store}: {e}") from e
    log.info("Generated password salt for %s in %s", username, store)
    return salt


def hash_password(secret: str, *, salt: Optional[str] = None) -> str:
    """SHA-512 crypt hash, the format /etc/shadow and `usermod -p` expect."""
    if salt is None:
        return sha512_crypt.using(rounds=_ROUNDS).hash(secret)
    return sha512_crypt.using(rounds=_ROUNDS, salt=salt).hash(secret)
