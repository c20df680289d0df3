# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hostharden/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

import typer

from hostharden.cli.helper import exit_code, inventory_path, parse_tags
from hostharden.config.loader import load_config, resolve_config
from hostharden.config.models import SALT_RE, HardeningConfig, ResolvedConfig
from hostharden.config.secrets import hash_password
from hostharden.errors import ConfigError, PreconditionError
from hostharden.inventory import TargetHost, limit_hosts, read_hosts_from_inventory
from hostharden.logging.log import DEFAULT_LOG_DIR, init_logging
from hostharden.observers.console import ConsoleObserver
from hostharden.observers.jsonfile import JsonFileObserver
from hostharden.observers.logger import LoggerObserver
from hostharden.procedure.executor import RunOptions, harden_hosts
from hostharden.procedure.hardening import build_procedure
from hostharden.procedure.verify import verify_hosts


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Host hardening CLI", no_args_is_help=True)

# exit code for bad config or a failed controller-side precondition
EXIT_CONFIG = 2


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _resolve(config: Path) -> Tuple[HardeningConfig, ResolvedConfig]:
    try:
        cfg = load_config(config)
        return cfg, resolve_config(cfg)
    except (ConfigError, PreconditionError) as e:
        typer.secho(f"ERROR: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_CONFIG)


def _hosts(
    inventory: Optional[Path],
    group: str,
    limit: Optional[str],
    ssh_user: str,
    ssh_key: Optional[Path],
) -> List[TargetHost]:
    inv = inventory or inventory_path()
    try:
        hosts = read_hosts_from_inventory(inv, group, default_user=ssh_user, default_key=ssh_key)
        hosts = limit_hosts(hosts, limit)
    except (FileNotFoundError, ValueError) as e:
        raise typer.BadParameter(str(e)) from e
    if not hosts:
        typer.secho(f"No hosts in group [{group}] of {inv}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_CONFIG)
    return hosts


def _observers(logger, run_id: str) -> list:
    return [
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(DEFAULT_LOG_DIR / f"{run_id}.jsonl"),
    ]


def _banner(title: str, run_id: str, log_path: Path) -> None:
    typer.echo("")
    typer.secho(title, bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Path = typer.Argument(..., help="Hardening config YAML"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i", help="INI inventory"),
    group: str = typer.Option("targets", "--group", help="Inventory group to harden"),
    limit: Optional[str] = typer.Option(None, "--limit", help="Comma separated host names"),
    tags: Optional[str] = typer.Option(
        None,
        "--tags",
        help="Phases to run: patch,services,users,admin,ssh,firewall,banners or all",
    ),
    ssh_user: str = typer.Option("root", "--ssh-user", help="Default SSH user"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key", help="Default private key"),
    forks: Optional[int] = typer.Option(None, "--forks", min=1, help="Hosts processed in parallel"),
    check: bool = typer.Option(False, "--check", help="Report what would change without changing it"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Apply the hardening procedure to every host in the inventory group."""
    tag_list = parse_tags(tags)
    logger, run_id, log_path = init_logging(verbose=debug)
    _banner("Host Hardening Started", run_id, log_path)

    cfg, resolved = _resolve(config)
    hosts = _hosts(inventory, group, limit, ssh_user, ssh_key)
    logger.debug("hosts: %s tags: %s", [h.hostname for h in hosts], tag_list or "all")

    reports = harden_hosts(
        hosts,
        resolved,
        RunOptions(tags=tag_list, dry_run=check, forks=forks or cfg.forks),
        observers=_observers(logger, run_id),
        run_id=run_id,
    )
    raise typer.Exit(exit_code(reports))


@app.command()
def verify(
    config: Path = typer.Argument(..., help="Hardening config YAML"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i"),
    group: str = typer.Option("targets", "--group"),
    limit: Optional[str] = typer.Option(None, "--limit"),
    ssh_user: str = typer.Option("root", "--ssh-user"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Audit hosts against the hardened end state without changing them."""
    logger, run_id, log_path = init_logging(verbose=debug)
    _banner("Host Hardening Verification", run_id, log_path)

    _, resolved = _resolve(config)
    hosts = _hosts(inventory, group, limit, ssh_user, ssh_key)
    results = verify_hosts(hosts, resolved, observers=_observers(logger, run_id), run_id=run_id)

    failed = [h for h, findings in results.items() if not all(f.ok for f in findings)]
    if failed:
        typer.secho(f"Verification failed on: {', '.join(failed)}", fg=typer.colors.RED)
        raise typer.Exit(1)
    typer.secho("All hosts verified", fg=typer.colors.GREEN)


@app.command()
def plan(
    config: Path = typer.Argument(..., help="Hardening config YAML"),
    tags: Optional[str] = typer.Option(None, "--tags"),
):
    """Print the ordered task list without contacting any host."""
    tasks, handlers = build_procedure(_resolve(config)[1], parse_tags(tags))
    for i, task in enumerate(tasks, 1):
        line = f"{i:>2}. [{task.phase}] {task.name}"
        if task.ignore_errors:
            line += "  (ignore errors)"
        if task.notify:
            line += f"  -> notify: {', '.join(task.notify)}"
        typer.echo(line)
    typer.echo("")
    typer.echo(f"handlers: {', '.join(h.name for h in handlers)}")


@app.command("hash-password")
def hash_password_cmd(
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True,
    ),
    salt: Optional[str] = typer.Option(None, "--salt", help="Fixed salt for a reproducible hash"),
):
    """Print a SHA-512 crypt hash suitable for user_password."""
    if salt is not None and not SALT_RE.fullmatch(salt):
        raise typer.BadParameter("must be 1-16 chars of [./0-9A-Za-z]", param_hint="--salt")
    typer.echo(hash_password(password, salt=salt))


if __name__ == "__main__":
    app()
