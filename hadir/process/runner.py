"""Bounded execution of external commands.

Every child runs in its own session so the whole process group (rsync's
helpers, the shell behind a write probe) can be signalled at once. A child
that outlives its deadline is escalated SIGTERM -> SIGKILL, polling with a
backoff schedule between signals.

Only one child is ever in flight. A child that survives SIGKILL is kept as
"lost" and no further commands are started until it is confirmed gone.
"""

import logging
import os
import shlex
import signal
import subprocess
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = (0.0, 0.5, 1.0, 2.0, 4.0)

Command = Union[str, Sequence[str]]


class RunStatus(Enum):
    """Normalized outcome of a bounded run."""
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    UNKILLABLE = "unkillable"


@dataclass
class RunResult:
    """Result of one bounded run.

    Attributes:
        status: Normalized outcome
        command: Printable form of the command
        returncode: Exit code if the process was reaped, else None
        elapsed: Wall-clock seconds from spawn to reap (or give-up)
        output: Captured output, only for capture runs
    """
    status: RunStatus
    command: str
    returncode: Optional[int] = None
    elapsed: float = 0.0
    output: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """True only for a clean zero exit inside the deadline."""
        return self.status is RunStatus.SUCCESS

    def describe(self) -> str:
        """Short human-readable outcome for log lines."""
        if self.status is RunStatus.SUCCESS:
            return f"succeeded in {self.elapsed:.1f}s"
        if self.status is RunStatus.FAILED:
            return f"failed with exit code {self.returncode} after {self.elapsed:.1f}s"
        if self.status is RunStatus.TIMED_OUT:
            return f"timed out after {self.elapsed:.1f}s and was killed"
        return "could not be terminated"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "status": self.status.value,
            "command": self.command,
            "returncode": self.returncode,
            "elapsed": self.elapsed,
        }


def format_command(command: Command) -> str:
    """Render a command for logs and output markers."""
    if isinstance(command, str):
        return command
    return " ".join(shlex.quote(str(part)) for part in command)


class BoundedProcessRunner:
    """Run external commands under a hard wall-clock timeout.

    Example:
        with BoundedProcessRunner(output_file=Path("/var/log/hadir.out")) as runner:
            result = runner.run(["rsync", "-a", "src/", "dst/"], timeout=300)
            if not result.succeeded:
                print(result.describe())
    """

    def __init__(
        self,
        output_file: Optional[Path] = None,
        stamp_output: bool = True,
        backoff: Sequence[float] = DEFAULT_BACKOFF,
    ):
        """Initialize the runner.

        Args:
            output_file: File that receives all child output (appended).
                         Output is discarded when not set.
            stamp_output: Write a timestamped marker line before each run
            backoff: Delays (seconds) between polls after each signal
        """
        self.output_file = Path(output_file) if output_file else None
        self.stamp_output = stamp_output
        self.backoff = tuple(backoff)
        self._current: Optional[subprocess.Popen] = None
        self._lost: Optional[subprocess.Popen] = None

    def __enter__(self) -> "BoundedProcessRunner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def busy(self) -> bool:
        """True while a child (running or lost) is not confirmed dead."""
        for proc in (self._current, self._lost):
            if proc is not None and proc.poll() is None:
                return True
        return False

    def run(
        self,
        command: Command,
        timeout: float,
        shell: bool = False,
        capture: bool = False,
    ) -> RunResult:
        """Run a command and wait for it, at most ``timeout`` seconds.

        A process still running at the deadline is reported TIMED_OUT even
        if it exits while being signalled; finishing exactly on the deadline
        counts as a timeout.

        Args:
            command: Argument list, or a string when ``shell`` is True
            timeout: Hard limit in seconds
            shell: Run the string through /bin/sh
            capture: Collect output into RunResult.output instead of the sink

        Returns:
            RunResult describing the outcome
        """
        display = format_command(command)

        if self._lost is not None:
            if self._lost.poll() is None:
                logger.critical(
                    "Refusing to run %s: previous child pid %d is still alive",
                    display, self._lost.pid,
                )
                return RunResult(RunStatus.UNKILLABLE, display)
            logger.info("Lost child pid %d has finally exited", self._lost.pid)
            self._lost = None

        with self._open_sink(display, capture) as sink:
            logger.debug("Running (timeout %.1fs): %s", timeout, display)
            start = time.monotonic()
            try:
                proc = subprocess.Popen(
                    command,
                    shell=shell,
                    stdin=subprocess.DEVNULL,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as e:
                logger.error("Cannot start %s: %s", display, e)
                return RunResult(
                    RunStatus.FAILED, display, elapsed=time.monotonic() - start
                )

            self._current = proc
            try:
                result = self._supervise(proc, display, timeout, start)
            finally:
                self._current = None
                if proc.poll() is None and proc is not self._lost:
                    # Interrupted (shutdown signal) while the child was running.
                    self._force_kill(proc)

            if capture and result.status is RunStatus.SUCCESS:
                sink.seek(0)
                result.output = sink.read().decode("utf-8", errors="replace")

        logger.debug("%s %s", display, result.describe())
        return result

    def close(self) -> None:
        """Force-kill any child that is still running."""
        for proc in (self._current, self._lost):
            if proc is not None and proc.poll() is None:
                logger.warning("Killing child pid %d on shutdown", proc.pid)
                self._force_kill(proc)
        self._current = None

    def _supervise(
        self,
        proc: subprocess.Popen,
        display: str,
        timeout: float,
        start: float,
    ) -> RunResult:
        """Wait for the child, escalating signals past the deadline."""
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            returncode = None
        elapsed = time.monotonic() - start

        if returncode is not None and elapsed < timeout:
            # Leftover group members must not outlive their leader.
            self._signal_group(proc, signal.SIGKILL)
            status = RunStatus.SUCCESS if returncode == 0 else RunStatus.FAILED
            return RunResult(status, display, returncode, elapsed)

        if returncode is None:
            logger.warning("%s still running after %.1fs, terminating", display, timeout)
            if not self._terminate(proc):
                self._lost = proc
                logger.critical(
                    "Could not terminate pid %d (%s); supervisor has lost control of it",
                    proc.pid, display,
                )
                return RunResult(
                    RunStatus.UNKILLABLE, display, None, time.monotonic() - start
                )
        else:
            self._signal_group(proc, signal.SIGKILL)

        return RunResult(
            RunStatus.TIMED_OUT, display, proc.returncode, time.monotonic() - start
        )

    def _terminate(self, proc: subprocess.Popen) -> bool:
        """Escalate SIGTERM then SIGKILL. Returns True once the child is reaped."""
        for sig in (signal.SIGTERM, signal.SIGKILL):
            self._signal_group(proc, sig)
            if self._poll_with_backoff(proc):
                self._signal_group(proc, signal.SIGKILL)
                return True
            logger.warning("pid %d survived %s", proc.pid, signal.Signals(sig).name)
        return False

    def _poll_with_backoff(self, proc: subprocess.Popen) -> bool:
        for delay in self.backoff:
            if delay:
                time.sleep(delay)
            if proc.poll() is not None:
                return True
        return False

    def _force_kill(self, proc: subprocess.Popen) -> None:
        self._signal_group(proc, signal.SIGKILL)
        try:
            proc.wait(timeout=max(self.backoff) if self.backoff else 1.0)
        except subprocess.TimeoutExpired:
            logger.critical("pid %d did not die after SIGKILL", proc.pid)

    @staticmethod
    def _signal_group(proc: subprocess.Popen, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.error("Cannot signal process group %d: %s", proc.pid, e)

    @contextmanager
    def _open_sink(self, display: str, capture: bool):
        """Yield the stdout target for one run."""
        if capture:
            with tempfile.TemporaryFile() as f:
                yield f
            return

        if self.output_file is None:
            yield subprocess.DEVNULL
            return

        try:
            f = open(self.output_file, "ab")
        except OSError as e:
            logger.warning("Cannot open output file %s: %s", self.output_file, e)
            yield subprocess.DEVNULL
            return

        with f:
            if self.stamp_output:
                stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                f.write(f"=== {stamp} {display}\n".encode("utf-8"))
                f.flush()
            yield f
