# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/cli/helper.py
from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import typer

from hostharden.procedure.hardening import resolve_tags
from hostharden.procedure.runner import HostReport


def _default_workspace_root() -> Path:
    # Resolve from this file if WORKSPACE_ROOT not provided
    return Path(__file__).resolve().parents[3]


def inventory_path(workspace_root: Optional[Path] = None) -> Path:
    """
    Return the default inventory location.
    Uses WORKSPACE_ROOT env var if set, otherwise resolves from this file.
    """
    root = workspace_root or Path(os.environ.get("WORKSPACE_ROOT", _default_workspace_root()))
    return root / "cloud-config" / "inventory" / "hosts.ini"


def parse_tags(tags: Optional[str]) -> Optional[List[str]]:
    """
    Split a --tags value and validate it up front.

    Rules:
    - No --tags → every phase
    - --tags all → every phase
    - Otherwise → only the named phases, still in procedure order
    """
    if not tags:
        return None
    items = [t.strip() for t in tags.split(",") if t.strip()]
    try:
        resolve_tags(items)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    return items


def exit_code(reports: dict[str, HostReport]) -> int:
    """0 when every host converged, 1 when any host failed or was unreachable."""
    return 1 if any(r.failed for r in reports.values()) else 0
