# src/hostharden/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single invocation

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(run_id: Optional[str] = None) -> Dict[str, Any]:
    return {"ts": _now(), "run_id": run_id or str(uuid.uuid4())}


def stamp(run_ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of *run_ctx* with a fresh timestamp."""
    return {**run_ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    hosts: List[str]
    check_mode: bool

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    ok: int
    failed: int
    unreachable: int


# ---------------------------------------------------------------------
# Task lifecycle (per host)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class TaskStarted(BaseEvent):
    host: str
    task: str
    phase: str

@dataclass(frozen=True)
class TaskFinished(BaseEvent):
    host: str
    task: str
    phase: str
    status: str       # "ok" | "changed" | "failed" | "ignored" | "skipped"
    msg: str = ""

@dataclass(frozen=True)
class HandlerRan(BaseEvent):
    host: str
    handler: str
    status: str       # "changed" | "failed"
    msg: str = ""


# ---------------------------------------------------------------------
# Host lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostUnreachable(BaseEvent):
    host: str
    error: str

@dataclass(frozen=True)
class HostRecap(BaseEvent):
    host: str
    ok: int
    changed: int
    failed: int
    ignored: int
    skipped: int
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class VerifyFinding(BaseEvent):
    host: str
    check: str
    ok: bool
    detail: str = ""
