"""Failover state machine for a highly-available directory.

FailoverSupervisor owns the operating mode and drives one cycle at a time:

    NORMAL:   mirror primary -> secondary, then the write probe if configured.
              Any failure repoints the link at the secondary (failover).
    FAILOVER: dry-run primary -> secondary, then the write probe.
              On success, copy edits made on the secondary back onto files
              that still exist on the primary; only if that also succeeds
              is the link repointed at the primary (failback), and the next
              cycle runs without sleeping so the secondary catches up.

Example:
    config = build_config(load_config_file(Path("/etc/hadird.yaml")))
    with FailoverSupervisor(config) as supervisor:
        supervisor.bootstrap()
        supervisor.run()
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from hadir.config import ConfigurationError, HadirConfig, Mode, Role
from hadir.health import Verdict, evaluate
from hadir.link import LinkController, LinkState, RepointResult
from hadir.notify import EVENT_FAILBACK, EVENT_FAILOVER, Notifier
from hadir.process.runner import BoundedProcessRunner, RunResult, RunStatus
from hadir.sync.commands import (
    MIRROR_PLAN,
    RECONCILE_PLAN,
    RECOVERY_PROBE_PLAN,
    SyncPlan,
    rsync_command,
)

logger = logging.getLogger(__name__)

MANUAL_INTERVENTION = "manual intervention likely required"


class BootstrapError(ConfigurationError):
    """Startup found external state hadir will not repair on its own."""


@dataclass
class SupervisorState:
    """Mutable state owned by one FailoverSupervisor.

    Attributes:
        mode: Current operating mode
        skip_next_sleep: Run the next cycle immediately (set by failback)
        cycles: Completed cycles
        started_degraded: Bootstrap found the primary unusable
        link_suspect: A repoint failed half way; the link may be missing
        last_transition: When the mode last changed
    """
    mode: Mode = Mode.NORMAL
    skip_next_sleep: bool = False
    cycles: int = 0
    started_degraded: bool = False
    link_suspect: bool = False
    last_transition: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "skip_next_sleep": self.skip_next_sleep,
            "cycles": self.cycles,
            "started_degraded": self.started_degraded,
            "link_suspect": self.link_suspect,
            "last_transition": self.last_transition.isoformat() if self.last_transition else None,
        }


@dataclass
class CycleResult:
    """Everything that happened in one cycle."""
    mode_before: Mode
    mode_after: Mode
    verdict: Verdict
    sync: RunResult
    probe: Optional[RunResult] = None
    reconcile: Optional[RunResult] = None
    repoint: Optional[RepointResult] = None

    @property
    def transitioned(self) -> bool:
        return self.mode_before is not self.mode_after


class FailoverSupervisor:
    """Keeps the access link on a working copy of the directory."""

    def __init__(
        self,
        config: HadirConfig,
        runner: Optional[BoundedProcessRunner] = None,
        link: Optional[LinkController] = None,
        notifier: Optional[Notifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the supervisor.

        Args:
            config: Validated configuration
            runner: Runs rsync and probes; built from config if not given
            link: Link controller; built from config if not given
            notifier: Mail dispatch; built from config if not given
            sleep: Used between cycles
        """
        self.config = config
        self.runner = runner or BoundedProcessRunner(
            output_file=config.output_file,
            stamp_output=config.stamp_output,
        )
        self.link = link or LinkController(config, self.runner)
        self.notifier = notifier or Notifier(config)
        self.state = SupervisorState()
        self._sleep = sleep
        self._bootstrapped = False

    def __enter__(self) -> "FailoverSupervisor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Kill any in-flight child process and pending mailers."""
        self.runner.close()
        self.notifier.close()

    def bootstrap(self) -> SupervisorState:
        """Work out the initial mode from the link.

        The primary is never checked directly; a hung primary would hang the
        check. Instead the link is resolved under sync_timeout.

        Raises:
            ConfigurationError: Link or secondary directory missing
            BootstrapError: Link points elsewhere, or cannot be repointed

        Returns:
            The supervisor state after bootstrap
        """
        link_path = self.config.link_path
        if not self.link.exists():
            raise ConfigurationError(f"link {link_path} does not exist")
        if not os.path.isdir(self.config.secondary_path):
            raise ConfigurationError(
                f"secondary directory {self.config.secondary_path} does not exist"
            )

        status = self.link.resolve(self.config.sync_timeout)

        if status.state is LinkState.PRIMARY:
            self.state.mode = Mode.NORMAL
            logger.info("Starting in normal mode: %s -> %s", link_path, status.target)

        elif status.state is LinkState.SECONDARY:
            self.state.mode = Mode.FAILOVER
            self.state.started_degraded = True
            logger.warning(
                "Starting already degraded: %s -> secondary %s", link_path, status.target
            )

        elif not status.resolved:
            reason = f"{link_path} could not be resolved at startup"
            if status.probe is not None:
                reason += f" (probe {status.probe.describe()})"
            logger.warning("Starting already degraded: %s; failing over", reason)
            repoint = self.link.repoint(Role.SECONDARY)
            if not repoint.success:
                raise BootstrapError(
                    f"cannot point {link_path} at secondary: {repoint.message}; "
                    f"{MANUAL_INTERVENTION}"
                )
            self.state.mode = Mode.FAILOVER
            self.state.started_degraded = True
            self.state.last_transition = datetime.now()
            self.notifier.notify(EVENT_FAILOVER, reason)

        else:
            raise BootstrapError(
                f"{link_path} resolves to {status.target}, which is neither "
                f"{self.config.primary_path} nor {self.config.secondary_path}"
            )

        self._bootstrapped = True
        return self.state

    def run_cycle(self) -> CycleResult:
        """Run one sync (plus probe), evaluate it and act on the verdict."""
        mode = self.state.mode
        plan = MIRROR_PLAN if mode is Mode.NORMAL else RECOVERY_PROBE_PLAN

        sync = self._run_sync(plan)
        probe = None
        if sync.succeeded and self.config.write_probe:
            probe = self._run_write_probe()

        verdict = evaluate(mode, sync, probe)
        result = CycleResult(mode, mode, verdict, sync, probe)

        if verdict is Verdict.TRANSITION_TO_FAILOVER:
            self._fail_over(result)
        elif verdict is Verdict.TRANSITION_TO_FAILBACK:
            self._fail_back(result)
        elif verdict is Verdict.STAY_DEGRADED:
            logger.info("Primary still unavailable, staying on secondary")

        if self.state.link_suspect and result.repoint is None:
            self._restore_link(result)

        result.mode_after = self.state.mode
        self.state.cycles += 1
        return result

    def run(self, max_cycles: Optional[int] = None) -> SupervisorState:
        """Loop forever (or for ``max_cycles``), sleeping between cycles."""
        if not self._bootstrapped:
            self.bootstrap()

        logger.info(
            "Supervising %s (sync timeout %.0fs, interval %.0fs)",
            self.config.link_path, self.config.sync_timeout, self.config.sleep_interval,
        )
        ran = 0
        while max_cycles is None or ran < max_cycles:
            self.run_cycle()
            ran += 1
            if max_cycles is not None and ran >= max_cycles:
                break
            self._pause()
        return self.state

    def status(self) -> Dict[str, Any]:
        """Snapshot of supervisor state and link contents."""
        return {
            "link": str(self.config.link_path),
            "link_target": self.link.raw_target(),
            "primary": str(self.config.primary_path),
            "secondary": str(self.config.secondary_path),
            "runner_busy": self.runner.busy,
            **self.state.to_dict(),
        }

    def _pause(self) -> None:
        if self.state.skip_next_sleep:
            self.state.skip_next_sleep = False
            logger.info("Skipping sleep so the secondary catches up with the primary")
            return
        self._sleep(self.config.sleep_interval)

    def _run_sync(self, plan: SyncPlan) -> RunResult:
        result = self.runner.run(rsync_command(self.config, plan), self.config.sync_timeout)
        self._log_outcome(plan.describe(), result)
        return result

    def _run_write_probe(self) -> RunResult:
        command = self.config.write_probe
        if self.config.pretend:
            logger.info("[pretend] would run write probe: %s", command)
            return RunResult(RunStatus.SUCCESS, command)
        result = self.runner.run(command, self.config.write_probe_timeout, shell=True)
        self._log_outcome("write probe", result)
        return result

    @staticmethod
    def _log_outcome(what: str, result: RunResult) -> None:
        if result.succeeded:
            logger.debug("%s %s", what, result.describe())
        elif result.status is RunStatus.UNKILLABLE:
            logger.critical("%s %s; child processes may be accumulating", what, result.describe())
        else:
            logger.warning("%s %s", what, result.describe())

    def _failure_reason(self, result: CycleResult) -> str:
        if not result.sync.succeeded:
            return f"sync {result.sync.describe()}"
        return f"write probe {result.probe.describe()}"

    def _fail_over(self, result: CycleResult) -> None:
        reason = self._failure_reason(result)
        logger.warning("Primary unhealthy (%s); failing over to secondary", reason)

        result.repoint = self.link.repoint(Role.SECONDARY)
        if not result.repoint.success:
            self.state.link_suspect = True
            logger.error(
                "Failover of %s failed (%s); %s, retrying next cycle",
                self.config.link_path, result.repoint.message, MANUAL_INTERVENTION,
            )
            return

        self.state.link_suspect = False
        self.state.mode = Mode.FAILOVER
        self.state.last_transition = datetime.now()
        self.notifier.notify(EVENT_FAILOVER, reason)

    def _fail_back(self, result: CycleResult) -> None:
        logger.info("Primary is responding again; reconciling secondary -> primary")

        result.reconcile = self._run_sync(RECONCILE_PLAN)
        if not result.reconcile.succeeded:
            logger.warning("Reconciliation %s; staying on secondary",
                           result.reconcile.describe())
            return

        result.repoint = self.link.repoint(Role.PRIMARY)
        if not result.repoint.success:
            self.state.link_suspect = True
            logger.error(
                "Failback of %s failed (%s); %s, retrying next cycle",
                self.config.link_path, result.repoint.message, MANUAL_INTERVENTION,
            )
            return

        self.state.link_suspect = False
        self.state.mode = Mode.NORMAL
        self.state.skip_next_sleep = True
        self.state.last_transition = datetime.now()
        self.notifier.notify(EVENT_FAILBACK, "primary recovered and reconciled")

    def _restore_link(self, result: CycleResult) -> None:
        """Point the link back at the current mode's directory after a failed repoint."""
        role = Role.PRIMARY if self.state.mode is Mode.NORMAL else Role.SECONDARY
        logger.warning("Restoring %s to %s after an earlier failed repoint",
                       self.config.link_path, role.value)
        result.repoint = self.link.repoint(role)
        if result.repoint.success:
            self.state.link_suspect = False
        else:
            logger.error("Restoring %s failed (%s); %s",
                         self.config.link_path, result.repoint.message, MANUAL_INTERVENTION)
