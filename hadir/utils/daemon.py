"""Running hadir in the background.

Detaching is left to pandaemonium's Daemon. The pid file doubles as a
lock: only one supervisor may own a given link, so a second instance
started with the same pid file is refused.
"""

import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from pandaemonium import AlreadyLocked, Daemon, PidLockFile

from hadir.config import ConfigurationError, HadirError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class AlreadyRunning(HadirError):
    """Another supervisor holds the pid file lock."""


def daemonize(workdir: str = "/") -> None:
    """Detach the current process from its terminal.

    Returns only in the detached process; the original process exits.
    """
    Daemon(working_directory=workdir).activate()


def _raise_system_exit(signum, frame) -> None:
    raise SystemExit(128 + signum)


def install_shutdown_handlers() -> None:
    """Turn termination signals into SystemExit so cleanup blocks run."""
    for sig in SHUTDOWN_SIGNALS:
        signal.signal(sig, _raise_system_exit)


@contextmanager
def shutdown_deferred() -> Iterator[None]:
    """Hold back termination signals until the block is done.

    A signal that arrives inside the block is delivered when it exits.
    """
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, SHUTDOWN_SIGNALS)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


@contextmanager
def pid_lock(path: Optional[Path]) -> Iterator[None]:
    """Hold the pid file lock at ``path`` for the duration of the block.

    Raises:
        AlreadyRunning: Another process holds the lock
    """
    if path is None:
        yield
        return

    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"cannot create pid file directory {path.parent}: {e}") from e
    lock = PidLockFile(str(path))
    try:
        lock.acquire()
    except AlreadyLocked as e:
        raise AlreadyRunning(f"another hadir already holds {path}") from e
    logger.debug("Locked pid file %s", path)
    try:
        yield
    finally:
        lock.release()


def check_not_running(path: Optional[Path]) -> None:
    """Fail early, while still attached to the terminal, if the lock is taken."""
    with pid_lock(path):
        pass
