"""Synchronization commands for hadir.

hadir never copies files itself; rsync does. This package decides which
rsync invocation each step of the failover cycle needs.
"""

from hadir.sync.commands import (
    SyncDirection,
    SyncMode,
    SyncPlan,
    MIRROR_PLAN,
    RECOVERY_PROBE_PLAN,
    RECONCILE_PLAN,
    rsync_command,
    readlink_command,
)

__all__ = [
    "SyncDirection",
    "SyncMode",
    "SyncPlan",
    "MIRROR_PLAN",
    "RECOVERY_PROBE_PLAN",
    "RECONCILE_PLAN",
    "rsync_command",
    "readlink_command",
]
