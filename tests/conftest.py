"""Shared pytest fixtures for hadir tests.

Provides temp primary/secondary directories with an access link, config
objects, and scripted stand-ins for the process runner and notifier so the
state machine can be driven without rsync or a hung filesystem.
"""

import os
import time
from pathlib import Path

import pytest

from hadir.config import HadirConfig
from hadir.process.runner import RunResult, RunStatus, format_command


class FakeRunner:
    """Scripted BoundedProcessRunner.

    Commands are classified by kind (mirror, dry_run, reconcile, probe,
    readlink). Each kind pops scripted statuses and succeeds once its
    script is exhausted. Successful readlink calls resolve the real path.
    """

    def __init__(self):
        self.calls = []
        self.outcomes = {
            "mirror": [],
            "dry_run": [],
            "reconcile": [],
            "probe": [],
            "readlink": [],
        }
        self.closed = False
        self.busy = False

    def script(self, kind, *statuses):
        self.outcomes[kind].extend(statuses)

    @staticmethod
    def kind_of(command):
        if isinstance(command, str):
            return "probe"
        if command[0] == "readlink":
            return "readlink"
        if "--dry-run" in command:
            return "dry_run"
        if "--existing" in command:
            return "reconcile"
        return "mirror"

    def kinds(self):
        return [kind for kind, _, _ in self.calls]

    def run(self, command, timeout, shell=False, capture=False):
        kind = self.kind_of(command)
        self.calls.append((kind, command, timeout))
        queue = self.outcomes[kind]
        status = queue.pop(0) if queue else RunStatus.SUCCESS

        output = None
        if kind == "readlink" and status is RunStatus.SUCCESS:
            path = command[-1]
            if os.path.exists(path):
                output = os.path.realpath(path) + "\n"
            else:
                status = RunStatus.FAILED

        returncode = {RunStatus.SUCCESS: 0, RunStatus.FAILED: 1}.get(status)
        return RunResult(status, format_command(command), returncode, 0.01, output)

    def close(self):
        self.closed = True


class FakeNotifier:
    """Records notifications instead of sending mail."""

    def __init__(self):
        self.events = []
        self.closed = False

    def notify(self, event, reason=""):
        self.events.append((event, reason))
        return True

    def close(self):
        self.closed = True


@pytest.fixture
def hadir_dirs(tmp_path):
    """Primary and secondary directories with the link pointing at the primary."""
    primary = tmp_path / "primary"
    secondary = tmp_path / "secondary"
    primary.mkdir()
    secondary.mkdir()
    (primary / "data.txt").write_text("primary data")
    link = tmp_path / "current"
    os.symlink(primary, link)
    return {"primary": primary, "secondary": secondary, "link": link, "root": tmp_path}


@pytest.fixture
def hadir_config(hadir_dirs):
    """HadirConfig for hadir_dirs with short timings."""
    return HadirConfig(
        link_path=hadir_dirs["link"],
        primary_path=hadir_dirs["primary"],
        secondary_path=hadir_dirs["secondary"],
        sync_timeout=5,
        sleep_interval=1,
        notify=["ops@example.com"],
    )


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def sleeps():
    """List that a supervisor's sleep function appends to."""
    return []


def link_target(link: Path) -> Path:
    """Where a symlink points, without following it further."""
    return Path(os.readlink(link))


def wait_until(condition, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        assert time.monotonic() < deadline
        time.sleep(0.05)


def process_alive(pid: int) -> bool:
    """True while pid exists and is not a zombie."""
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    except FileNotFoundError:
        return False
