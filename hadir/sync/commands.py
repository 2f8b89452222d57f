"""Command lines for the external tools hadir drives.

rsync does the actual copying. hadir only decides direction and mode:

- MIRROR:          rsync -a --delete SRC/ DST/
- DRY_RUN:         MIRROR plus --dry-run, touches nothing
- UPDATE_EXISTING: rsync -a --existing SRC/ DST/, never adds or deletes
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Sequence

from hadir.config import HadirConfig, Role


class SyncMode(Enum):
    """How rsync treats the destination."""
    MIRROR = "mirror"
    DRY_RUN = "dry_run"
    UPDATE_EXISTING = "update_existing"


class SyncDirection(Enum):
    """Which way a sync copies."""
    PRIMARY_TO_SECONDARY = "primary_to_secondary"
    SECONDARY_TO_PRIMARY = "secondary_to_primary"

    @property
    def source(self) -> Role:
        return Role.PRIMARY if self is SyncDirection.PRIMARY_TO_SECONDARY else Role.SECONDARY

    @property
    def destination(self) -> Role:
        return Role.SECONDARY if self is SyncDirection.PRIMARY_TO_SECONDARY else Role.PRIMARY


@dataclass(frozen=True)
class SyncPlan:
    """One sync to perform: a direction and a mode."""
    direction: SyncDirection
    mode: SyncMode

    def describe(self) -> str:
        src = self.direction.source.value
        dst = self.direction.destination.value
        return f"{self.mode.value} sync {src} -> {dst}"


# Normal mode keeps the secondary an exact copy of the primary.
MIRROR_PLAN = SyncPlan(SyncDirection.PRIMARY_TO_SECONDARY, SyncMode.MIRROR)
# Failover mode checks the primary without writing anywhere.
RECOVERY_PROBE_PLAN = SyncPlan(SyncDirection.PRIMARY_TO_SECONDARY, SyncMode.DRY_RUN)
# Carries edits made on the secondary back before failing back.
RECONCILE_PLAN = SyncPlan(SyncDirection.SECONDARY_TO_PRIMARY, SyncMode.UPDATE_EXISTING)


def _tree(path: Path) -> str:
    """rsync needs a trailing slash to copy a directory's contents."""
    text = str(path)
    return text if text.endswith("/") else text + "/"


def rsync_command(config: HadirConfig, plan: SyncPlan) -> List[str]:
    """Build the rsync argument list for a sync plan.

    Args:
        config: Supplies paths, rsync binary and extra options
        plan: Direction and mode

    Returns:
        Argument list suitable for subprocess
    """
    cmd = [config.rsync_command, "-a"]

    if plan.mode is SyncMode.UPDATE_EXISTING:
        cmd.append("--existing")
    else:
        cmd.append("--delete")

    if plan.mode is SyncMode.DRY_RUN or config.pretend:
        cmd.append("--dry-run")

    cmd.extend(config.rsync_options)
    cmd.append(_tree(config.path_for(plan.direction.source)))
    cmd.append(_tree(config.path_for(plan.direction.destination)))
    return cmd


def readlink_command(paths: Sequence[Path]) -> List[str]:
    """Canonicalize paths, failing if any component is missing.

    ``readlink -e`` stats the final target, so it hangs exactly when the
    filesystem behind it does; callers run it under a timeout.
    """
    return ["readlink", "-e", "--"] + [str(p) for p in paths]
