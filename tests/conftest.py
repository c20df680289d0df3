import shlex
import uuid
from pathlib import Path

import pytest

from hostharden.config.loader import resolve_config
from hostharden.config.models import HardeningConfig
from hostharden.inventory import TargetHost
from hostharden.procedure.context import HostContext
from hostharden.tasks.reboot import BOOT_ID_PATH, REBOOT_REQUIRED_PATH

PUBKEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeControllerKeyForTests ops@controller"

STOCK_SSHD_CONFIG = (
    "Include /etc/ssh/sshd_config.d/*.conf\n"
    "#PermitRootLogin prohibit-password\n"
    "KbdInteractiveAuthentication no\n"
    "UsePAM yes\n"
    "X11Forwarding yes\n"
    "Subsystem sftp /usr/lib/openssh/sftp-server\n"
)


# ----------------- Fake target host -----------------

def _octal(mode):
    return int(mode, 8)


class FakeHost:
    """
    In-memory Debian-ish host answering the commands the tasks send.

    Implements the runner surface (run/read_text/put_text/temp_path/close)
    so it can be dropped into a HostContext in place of an SSHRunner.
    """

    def __init__(self, *, upgrades=("openssl", "openssh-server"), services=None):
        self.files = {
            "/etc/ssh/sshd_config": self._entry(STOCK_SSHD_CONFIG, mode=0o644),
            "/etc/issue.net": self._entry("Ubuntu 22.04.4 LTS\n", mode=0o644),
            "/etc/motd": self._entry("", mode=0o644),
        }
        self.dirs = {"/etc/sudoers.d": ("root", "root", 0o750), "/tmp": ("root", "root", 0o1777)}
        self.groups = {"root", "sudo", "users"}
        self.users = {"root": {"primary": "root", "groups": [], "shell": "/bin/bash", "hash": "!"}}
        self.services = services if services is not None else {
            "ssh": {"enabled": True, "active": True},
            "cups": {"enabled": True, "active": True},
            "avahi-daemon": {"enabled": True, "active": True},
            "snapd": {"enabled": True, "active": True},
            "bluetooth": {"enabled": False, "active": False},
        }
        self.installed = {"openssh-server", "sudo"}
        self.upgrades = list(upgrades)
        self.zones = {
            layer: {
                "public": {"service": {"ssh", "dhcpv6-client"}, "source": set()},
                "internal": {
                    "service": {"ssh", "mdns", "samba-client", "dhcpv6-client"},
                    "source": set(),
                },
            }
            for layer in ("permanent", "runtime")
        }
        self.boot_id = str(uuid.uuid4())
        self.reboot_required = False
        self.reboots = 0
        self.restarts = []
        self.closed = 0
        self.commands = []
        self.fail = {}
        self._tmp = 0

    @staticmethod
    def _entry(content, owner="root", group="root", mode=0o644):
        return {"content": content, "owner": owner, "group": group, "mode": mode}

    # ---- runner surface ----

    def run(self, cmd, *, sudo=False, env=None, timeout=None):
        self.commands.append(cmd)
        for prefix, result in self.fail.items():
            if cmd.startswith(prefix):
                return result
        argv = shlex.split(cmd)
        handler = getattr(self, "_cmd_" + argv[0].replace("-", "_"), None)
        if handler is None:
            return 127, "", f"bash: {argv[0]}: command not found"
        return handler(argv[1:])

    def read_text(self, path, *, sudo=False):
        if path == BOOT_ID_PATH:
            return self.boot_id + "\n"
        entry = self.files.get(path)
        return None if entry is None else entry["content"]

    def put_text(self, content, path, *, sudo=False):
        self.files[path] = self._entry(content)

    def temp_path(self):
        self._tmp += 1
        return f"/tmp/.hostharden.tmp.{self._tmp}"

    def close(self):
        self.closed += 1

    # ---- helpers for assertions ----

    def ran(self, prefix):
        return [c for c in self.commands if c.startswith(prefix)]

    def content(self, path):
        return self.files[path]["content"]

    def mode(self, path):
        return self.files[path]["mode"]

    # ---- files ----

    def _missing(self, tool, path):
        return 1, "", f"{tool}: cannot access '{path}': No such file or directory"

    def _cmd_stat(self, args):
        path = args[-1]
        if path in self.files:
            e = self.files[path]
            return 0, f"{e['owner']}:{e['group']}:{e['mode']:o}\n", ""
        if path in self.dirs:
            owner, group, mode = self.dirs[path]
            return 0, f"{owner}:{group}:{mode:o}\n", ""
        return self._missing("stat", path)

    def _cmd_cp(self, args):
        src, dst = args[-2], args[-1]
        if src not in self.files:
            return self._missing("cp", src)
        self.files[dst] = dict(self.files[src])
        return 0, "", ""

    def _cmd_chown(self, args):
        owner, _, group = args[0].partition(":")
        if owner not in self.users:
            return 1, "", f"chown: invalid user: '{args[0]}'"
        if group not in self.groups:
            return 1, "", f"chown: invalid group: '{args[0]}'"
        if args[1] not in self.files:
            return self._missing("chown", args[1])
        self.files[args[1]].update(owner=owner, group=group)
        return 0, "", ""

    def _cmd_chmod(self, args):
        if args[1] not in self.files:
            return self._missing("chmod", args[1])
        self.files[args[1]]["mode"] = _octal(args[0])
        return 0, "", ""

    def _cmd_mv(self, args):
        src, dst = args[-2], args[-1]
        if src not in self.files:
            return self._missing("mv", src)
        self.files[dst] = self.files.pop(src)
        return 0, "", ""

    def _cmd_rm(self, args):
        self.files.pop(args[-1], None)
        return 0, "", ""

    def _cmd_install(self, args):
        opts = dict(zip(args[1:-1:2], args[2:-1:2]))
        owner, group = opts["-o"], opts["-g"]
        if owner not in self.users or group not in self.groups:
            return 1, "", f"install: invalid user or group '{owner}:{group}'"
        self.dirs[args[-1]] = (owner, group, _octal(opts["-m"]))
        return 0, "", ""

    def _cmd_cat(self, args):
        content = self.read_text(args[-1])
        if content is None:
            return self._missing("cat", args[-1])
        return 0, content, ""

    def _cmd_test(self, args):
        path = args[-1]
        exists = path in self.files or path in self.dirs
        if path == REBOOT_REQUIRED_PATH:
            exists = self.reboot_required
        return (0 if exists else 1), "", ""

    # ---- validators ----

    def _validated(self, path, tool):
        if "INVALID" in self.files.get(path, {}).get("content", ""):
            return 1, "", f"{tool}: syntax error in {path}"
        return 0, "", ""

    def _cmd_visudo(self, args):
        return self._validated(args[-1], "visudo")

    def _cmd_sshd(self, args):
        if args == ["-T"]:
            seen = {}
            for line in self.content("/etc/ssh/sshd_config").splitlines():
                if line.strip() and not line.startswith("#"):
                    key, _, value = line.partition(" ")
                    seen.setdefault(key.lower(), value)
            return 0, "".join(f"{k} {v}\n" for k, v in seen.items()), ""
        return self._validated(args[-1], "sshd")

    # ---- accounts ----

    def _cmd_getent(self, args):
        db, key = args
        if db == "group":
            return (0, f"{key}:x:1000:\n", "") if key in self.groups else (2, "", "")
        user = self.users.get(key)
        if user is None:
            return 2, "", ""
        if db == "passwd":
            return 0, f"{key}:x:1001:1001::/home/{key}:{user['shell']}\n", ""
        return 0, f"{key}:{user['hash']}:19800:0:99999:7:::\n", ""

    def _cmd_id(self, args):
        user = self.users.get(args[-1])
        if user is None:
            return 1, "", f"id: '{args[-1]}': no such user"
        return 0, " ".join([user["primary"]] + user["groups"]) + "\n", ""

    def _cmd_groupadd(self, args):
        if args[-1] in self.groups:
            return 9, "", f"groupadd: group '{args[-1]}' already exists"
        self.groups.add(args[-1])
        return 0, "", ""

    def _cmd_useradd(self, args):
        name = args[-1]
        opts = dict(zip(args[1:-1:2], args[2:-1:2]))
        if name in self.users:
            return 9, "", f"useradd: user '{name}' already exists"
        groups = [g for g in opts.get("-G", "").split(",") if g]
        for g in groups + ([opts["-g"]] if "-g" in opts else []):
            if g not in self.groups:
                return 6, "", f"useradd: group '{g}' does not exist"
        primary = opts.get("-g")
        if primary is None:
            if name in self.groups:
                return 9, "", f"useradd: group {name} exists - if you want to add this user to that group, use -g."
            self.groups.add(name)
            primary = name
        self.users[name] = {
            "primary": primary,
            "groups": groups,
            "shell": opts.get("-s", "/bin/sh"),
            "hash": opts.get("-p", "!"),
        }
        self.dirs[f"/home/{name}"] = (name, primary, 0o750)
        return 0, "", ""

    def _cmd_usermod(self, args):
        name = args[-1]
        user = self.users.get(name)
        if user is None:
            return 6, "", f"usermod: user '{name}' does not exist"
        if args[0] == "-a":
            for g in args[2].split(","):
                if g not in self.groups:
                    return 6, "", f"usermod: group '{g}' does not exist"
                if g not in user["groups"]:
                    user["groups"].append(g)
        elif args[0] == "-s":
            user["shell"] = args[1]
        elif args[0] == "-p":
            user["hash"] = args[1]
        return 0, "", ""

    # ---- services ----

    def _cmd_systemctl(self, args):
        verb, unit = args
        svc = self.services.get(unit)
        if svc is None:
            if verb == "is-enabled":
                return 1, "", f"Failed to get unit file state for {unit}.service: No such file or directory"
            if verb == "is-active":
                return 4, "inactive\n", ""
            return 5, "", f"Failed to {verb} {unit}.service: Unit {unit}.service not found."
        if verb == "is-enabled":
            return (0, "enabled\n", "") if svc["enabled"] else (1, "disabled\n", "")
        if verb == "is-active":
            return (0, "active\n", "") if svc["active"] else (3, "inactive\n", "")
        if verb in ("enable", "disable"):
            svc["enabled"] = verb == "enable"
        elif verb in ("start", "stop"):
            svc["active"] = verb == "start"
        elif verb == "restart":
            svc["active"] = True
            self.restarts.append(unit)
        return 0, "", ""

    # ---- packages ----

    def _cmd_apt_get(self, args):
        if args[0] == "update":
            return 0, "Reading package lists... Done\n", ""
        if args[0] == "-s":
            lines = [f"Inst {p} [1.0] (1.1 Ubuntu:22.04/jammy-updates [amd64])" for p in self.upgrades]
            return 0, "Reading package lists...\n" + "\n".join(lines) + "\n", ""
        if args[-1] == "dist-upgrade":
            if self.upgrades:
                self.reboot_required = True
            self.upgrades = []
            return 0, "", ""
        if "install" in args:
            pkg = args[-1]
            self.installed.add(pkg)
            if pkg == "firewalld":
                self.services["firewalld"] = {"enabled": True, "active": True}
            return 0, "", ""
        return 100, "", "E: Invalid operation"

    def _cmd_dpkg_query(self, args):
        pkg = args[-1]
        if pkg in self.installed:
            return 0, "install ok installed", ""
        return 1, "", f"dpkg-query: no packages found matching {pkg}"

    # ---- firewalld ----

    def _cmd_firewall_cmd(self, args):
        layer = "permanent" if "--permanent" in args else "runtime"
        zone = next(a.split("=", 1)[1] for a in args if a.startswith("--zone="))
        state = self.zones[layer][zone]
        op = args[-1]
        if op.startswith("--list-"):
            kind = op[len("--list-"):].rstrip("s")
            return 0, " ".join(sorted(state[kind])) + "\n", ""
        action, value = op[2:].split("=", 1)
        verb, kind = action.split("-", 1)
        if verb == "query":
            return (0, "yes\n", "") if value in state[kind] else (1, "no\n", "")
        if verb == "add":
            state[kind].add(value)
        else:
            state[kind].discard(value)
        return 0, "success\n", ""

    # ---- power ----

    def _cmd_shutdown(self, args):
        self.reboots += 1
        self.boot_id = str(uuid.uuid4())
        self.reboot_required = False
        return 0, "", ""


# ----------------- Fixtures -----------------

@pytest.fixture(autouse=True)
def salt_file(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "salts.yaml"
    monkeypatch.setenv("HOSTHARDEN_SALT_FILE", str(path))
    return path


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def target():
    return TargetHost(hostname="web-1", address="10.0.0.11")


@pytest.fixture
def ctx(fake_host, target):
    return HostContext(
        host=target,
        runner=fake_host,
        reconnect=lambda: fake_host,
        sleep=lambda s: None,
    )


@pytest.fixture
def pubkey_file(tmp_path: Path) -> Path:
    p = tmp_path / "id_rsa.pub"
    p.write_text(PUBKEY + "\n")
    return p


@pytest.fixture
def resolved(pubkey_file):
    cfg = HardeningConfig(
        user_password="Corr3ct-Horse!",
        local_public_key_path=pubkey_file,
    )
    return resolve_config(cfg)


@pytest.fixture
def public_key():
    return PUBKEY
