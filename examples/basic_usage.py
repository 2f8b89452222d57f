#!/usr/bin/env python3
"""Basic usage example for hadir.

This example demonstrates:
1. Building a configuration for a primary, a secondary and a link
2. Bootstrapping the supervisor (link -> primary, normal mode)
3. A healthy mirror cycle
4. Failover when the write probe starts failing
5. Failback once the primary is writable again

A marker file stands in for a healthy primary: the write probe fails
while it is missing.

Run this example (needs rsync on PATH):
    python basic_usage.py
"""

import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path

from hadir import FailoverSupervisor, build_config
from hadir.utils.logging import configure_root_logger


def main():
    if shutil.which("rsync") is None:
        print("rsync is required for this example", file=sys.stderr)
        return 1

    configure_root_logger(level=logging.INFO)

    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)

        primary = temp_path / "primary"
        secondary = temp_path / "secondary"
        link = temp_path / "current"
        primary.mkdir()
        secondary.mkdir()
        (primary / "report.txt").write_text("quarterly numbers\n")
        online = primary / ".online"
        online.touch()
        os.symlink(primary, link)

        config = build_config(overrides={
            "link_path": link,
            "primary_path": primary,
            "secondary_path": secondary,
            "sync_timeout": 30,
            "sleep_interval": 1,
            "write_probe": f"test -e {online}",
            "write_probe_timeout": 5,
        })

        print("=" * 60)
        print("hadir - Basic Usage Example")
        print("=" * 60)

        with FailoverSupervisor(config) as supervisor:
            print("\n[1] Bootstrap")
            state = supervisor.bootstrap()
            print(f"    mode: {state.mode.value}, link -> {os.readlink(link)}")

            print("\n[2] Healthy cycle mirrors primary onto secondary")
            result = supervisor.run_cycle()
            print(f"    verdict: {result.verdict.value}")
            print(f"    secondary has: {sorted(p.name for p in secondary.iterdir())}")

            print("\n[3] Primary stops accepting writes")
            online.unlink()
            result = supervisor.run_cycle()
            print(f"    verdict: {result.verdict.value}, link -> {os.readlink(link)}")

            print("\n[4] A consumer edits the file through the link")
            (link / "report.txt").write_text("quarterly numbers, revised\n")

            print("\n[5] Primary comes back")
            online.touch()
            result = supervisor.run_cycle()
            print(f"    verdict: {result.verdict.value}, link -> {os.readlink(link)}")
            print(f"    primary report.txt: {(primary / 'report.txt').read_text().strip()}")
            print(f"    skip next sleep: {supervisor.state.skip_next_sleep}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
