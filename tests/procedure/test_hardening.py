import dataclasses

import pytest

from hostharden.config.models import RebootSpec
from hostharden.procedure.hardening import PHASES, RESTART_SSH, build_procedure, resolve_tags
from hostharden.procedure.runner import IGNORED, run_tasks
from hostharden.procedure.verify import verify_host

from conftest import STOCK_SSHD_CONFIG


def _run(ctx, resolved, tags=None):
    tasks, handlers = build_procedure(resolved, tags)
    return run_tasks(ctx, tasks, handlers)


# ----------------- plan shape -----------------

def test_phases_in_fixed_order(resolved):
    tasks, handlers = build_procedure(resolved)
    phases = [t.phase for t in tasks]
    assert sorted(set(phases), key=phases.index) == list(PHASES)
    assert [h.name for h in handlers] == [RESTART_SSH]


def test_patch_reboots_after_upgrade(resolved):
    tasks, _ = build_procedure(resolved, ["patch"])
    assert [t.name for t in tasks] == [
        "Update package index and upgrade all packages",
        "Reboot after patching",
    ]


def test_only_service_tasks_ignore_errors(resolved):
    tasks, _ = build_procedure(resolved)
    assert {t.phase for t in tasks if t.ignore_errors} == {"services"}
    assert len([t for t in tasks if t.phase == "services"]) == 5


def test_ssh_tasks_notify_restart(resolved):
    tasks, _ = build_procedure(resolved, ["ssh"])
    assert [t.name for t in tasks] == [
        "Disable root login over SSH",
        "Install hardened sshd_config",
        "Configure SSH login banner",
    ]
    assert all(t.notify == (RESTART_SSH,) for t in tasks)


def test_firewall_moves_ssh_then_allow_lists_sources(resolved):
    tasks, _ = build_procedure(resolved, ["firewall"])
    assert [t.name for t in tasks] == [
        "Install firewalld",
        "Enable and start firewalld",
        "Allow ssh in zone internal",
        "Remove ssh from zone public",
        "Allow SSH from 192.168.1.0/24",
        "Allow SSH from 203.0.113.42/32",
    ]


def test_tags_filter_but_keep_order(resolved):
    tasks, _ = build_procedure(resolved, ["banners", "patch"])
    assert [t.phase for t in tasks] == ["patch", "patch", "banners", "banners"]


def test_resolve_tags():
    assert resolve_tags(None) == set(PHASES)
    assert resolve_tags(["all"]) == set(PHASES)
    assert resolve_tags(["ssh", " firewall "]) == {"ssh", "firewall"}
    with pytest.raises(ValueError, match="Unknown tags: sshd"):
        resolve_tags(["sshd"])


# ----------------- full run against a fake host -----------------

def test_full_run_converges_host(ctx, fake_host, resolved, public_key):
    report = _run(ctx, resolved)

    assert not report.failed, report.error
    # rpcbind is not installed on the fake host
    assert [o.name for o in report.outcomes if o.status == IGNORED] == ["Disable unused service rpcbind"]
    assert fake_host.reboots == 1
    assert fake_host.restarts == ["ssh"]
    assert report.handlers_run == [RESTART_SSH]

    # services
    for unit in ("cups", "avahi-daemon", "snapd", "bluetooth"):
        assert fake_host.services[unit] == {"enabled": False, "active": False}

    # users
    secure = fake_host.users["secureadmin"]
    assert "sudo" in secure["groups"]
    assert secure["hash"] == resolved.user_password_hash
    admin = fake_host.users["admin"]
    assert admin["primary"] == "admin"
    assert {"sudo", "admin"} <= set(admin["groups"])

    for user in ("secureadmin", "admin"):
        entry = fake_host.files[f"/etc/sudoers.d/{user}"]
        assert entry["content"] == f"{user} ALL=(ALL) NOPASSWD:ALL\n"
        assert (entry["owner"], entry["group"], entry["mode"]) == ("root", "root", 0o440)

    assert fake_host.dirs["/home/admin/.ssh"] == ("admin", "admin", 0o700)
    keys = fake_host.files["/home/admin/.ssh/authorized_keys"]
    assert keys["content"] == public_key + "\n"
    assert (keys["owner"], keys["mode"]) == ("admin", 0o600)

    # sshd
    sshd = fake_host.content("/etc/ssh/sshd_config")
    assert "PermitRootLogin no" in sshd.splitlines()
    assert "Banner /etc/issue.net" in sshd.splitlines()
    assert fake_host.mode("/etc/ssh/sshd_config") == 0o600
    assert [p for p in fake_host.files if p.startswith("/etc/ssh/sshd_config.") and p.endswith("~")]

    # firewall
    for layer in ("permanent", "runtime"):
        zones = fake_host.zones[layer]
        assert "ssh" not in zones["public"]["service"]
        assert "ssh" in zones["internal"]["service"]
        assert zones["internal"]["source"] == {"192.168.1.0/24", "203.0.113.42/32"}

    # banners
    for path, content in (
        ("/etc/issue.net", resolved.issue_net_content),
        ("/etc/motd", resolved.motd_content),
    ):
        entry = fake_host.files[path]
        assert entry["content"] == content
        assert (entry["owner"], entry["group"], entry["mode"]) == ("root", "root", 0o644)


def test_ssh_phase_keeps_a_backup_per_change(ctx, fake_host, resolved):
    report = _run(ctx, resolved, ["ssh"])

    assert not report.failed, report.error
    backups = {
        p: e["content"]
        for p, e in fake_host.files.items()
        if p.startswith("/etc/ssh/sshd_config.") and p.endswith("~")
    }
    assert len(backups) == 2
    assert STOCK_SSHD_CONFIG in backups.values()
    patched = STOCK_SSHD_CONFIG + "PermitRootLogin no\n"
    assert patched in backups.values()


def test_second_run_changes_nothing_but_reboot(ctx, fake_host, resolved):
    _run(ctx, resolved)
    report = _run(ctx, resolved)

    assert not report.failed
    assert report.changed_tasks() == ["Reboot after patching"]
    assert fake_host.restarts == ["ssh"]


def test_second_run_with_conditional_reboot_is_clean(ctx, fake_host, resolved):
    resolved = dataclasses.replace(resolved, reboot=RebootSpec(policy="if-required"))
    _run(ctx, resolved)
    assert fake_host.reboots == 1

    report = _run(ctx, resolved)
    assert report.changed_tasks() == []
    assert fake_host.reboots == 1


def test_failed_sshd_validation_stops_host_without_restart(ctx, fake_host, resolved):
    resolved = dataclasses.replace(resolved, sshd_config_content="INVALID\n")
    report = _run(ctx, resolved, ["ssh", "firewall"])

    assert report.failed
    assert "Install hardened sshd_config" in report.error
    assert fake_host.restarts == []
    assert all(o.status == "skipped" for o in report.outcomes if o.phase == "firewall")
    assert "ssh" in fake_host.zones["runtime"]["public"]["service"]


def test_check_mode_changes_nothing(ctx, fake_host, resolved):
    ctx.dry_run = True
    before = {p: dict(e) for p, e in fake_host.files.items()}

    report = _run(ctx, resolved, ["users", "admin", "ssh", "banners"])

    assert not report.failed
    assert report.changed_tasks()
    assert fake_host.files == before
    assert "secureadmin" not in fake_host.users
    assert fake_host.restarts == []


# ----------------- verification -----------------

def test_verify_passes_after_run(ctx, resolved):
    _run(ctx, resolved)
    findings = verify_host(ctx, resolved)
    assert findings
    assert [f.check for f in findings if not f.ok] == []


def test_verify_flags_unhardened_host(ctx, fake_host, resolved):
    fake_host.files["/etc/ssh/sshd_config"]["content"] += "PermitRootLogin yes\n"
    findings = {f.check: f for f in verify_host(ctx, resolved)}

    assert not findings["sshd permitrootlogin is no"].ok
    assert not findings["ssh removed from zone public"].ok
    assert not findings["ssh restricted to allow-listed sources"].ok
    assert not findings["admin has exactly the controller key"].ok
    # verification never mutates
    assert fake_host.users.keys() == {"root"}
