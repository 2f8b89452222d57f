"""Utility modules for hadir.

This package provides:
- logging: Root logger setup with text or JSON-lines output
- daemon: Detaching from the terminal, pid file lock, shutdown signals
"""

from hadir.utils.logging import configure_root_logger
from hadir.utils.daemon import (
    AlreadyRunning,
    check_not_running,
    daemonize,
    install_shutdown_handlers,
    pid_lock,
    shutdown_deferred,
)

__all__ = [
    "AlreadyRunning",
    "check_not_running",
    "configure_root_logger",
    "daemonize",
    "install_shutdown_handlers",
    "pid_lock",
    "shutdown_deferred",
]
