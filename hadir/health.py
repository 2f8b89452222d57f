"""Health decisions for one supervision cycle.

A pure decision table: no filesystem access, no logging, no clocks.

    mode      sync   probe        verdict
    NORMAL    fail   -            TRANSITION_TO_FAILOVER
    NORMAL    ok     ok/absent    STAY_HEALTHY
    NORMAL    ok     fail         TRANSITION_TO_FAILOVER
    FAILOVER  ok     ok/absent    TRANSITION_TO_FAILBACK
    FAILOVER  fail   -            STAY_DEGRADED
    FAILOVER  ok     fail         STAY_DEGRADED

TRANSITION_TO_FAILBACK is only a candidate: the supervisor still has to
run the reconciliation sync before it repoints the link.
"""

from enum import Enum
from typing import Optional

from hadir.config import Mode
from hadir.process.runner import RunResult


class Verdict(Enum):
    """What the supervisor should do after a cycle."""
    STAY_HEALTHY = "stay_healthy"
    STAY_DEGRADED = "stay_degraded"
    TRANSITION_TO_FAILOVER = "transition_to_failover"
    TRANSITION_TO_FAILBACK = "transition_to_failback"


def evaluate(
    mode: Mode,
    sync: RunResult,
    probe: Optional[RunResult] = None,
) -> Verdict:
    """Decide the verdict for a cycle.

    Args:
        mode: Mode the cycle ran in
        sync: Outcome of the cycle's sync (the dry-run probe in FAILOVER)
        probe: Outcome of the write probe, None if not configured or not run

    Returns:
        Verdict
    """
    healthy = sync.succeeded and (probe is None or probe.succeeded)

    if mode is Mode.NORMAL:
        return Verdict.STAY_HEALTHY if healthy else Verdict.TRANSITION_TO_FAILOVER

    return Verdict.TRANSITION_TO_FAILBACK if healthy else Verdict.STAY_DEGRADED
