"""hadir - highly-available directory maintainer.

Keeps a directory available through a stable symbolic link. The primary
directory is mirrored onto a local secondary copy with rsync; when the
primary stops responding (a hung network mount, a failing write) the link
is repointed at the secondary, and when the primary recovers, edits made
in the meantime are copied back and the link is pointed home again.

Quick Start:
    from hadir import FailoverSupervisor, build_config

    config = build_config(overrides={
        "link_path": "/data/current",
        "primary_path": "/mnt/nfs/data",
        "secondary_path": "/srv/data-copy",
        "notify": ["ops@example.com"],
    })
    with FailoverSupervisor(config) as supervisor:
        supervisor.bootstrap()
        supervisor.run()

Classes:
    FailoverSupervisor: The failover/failback state machine
    HadirConfig: Configuration for one supervised directory
    BoundedProcessRunner: Runs external commands under a hard timeout
    LinkController: Reads and repoints the access link
    Notifier: Mails failover/failback events
"""

__version__ = "0.1.0"
__license__ = "GPL"

from .config import (
    HadirConfig,
    HadirError,
    ConfigurationError,
    Mode,
    Role,
    build_config,
    load_config_file,
)
from .process.runner import BoundedProcessRunner, RunResult, RunStatus
from .link import LinkController, LinkState, LinkStatus, RepointResult
from .health import Verdict, evaluate
from .notify import Notifier
from .supervisor import (
    BootstrapError,
    CycleResult,
    FailoverSupervisor,
    SupervisorState,
)

__all__ = [
    "__version__",
    "__license__",
    # Configuration
    "HadirConfig",
    "HadirError",
    "ConfigurationError",
    "BootstrapError",
    "Mode",
    "Role",
    "build_config",
    "load_config_file",
    # Components
    "BoundedProcessRunner",
    "RunResult",
    "RunStatus",
    "LinkController",
    "LinkState",
    "LinkStatus",
    "RepointResult",
    "Verdict",
    "evaluate",
    "Notifier",
    # State machine
    "FailoverSupervisor",
    "SupervisorState",
    "CycleResult",
    "create_supervisor",
]


def create_supervisor(
    link_path: str,
    primary_path: str,
    secondary_path: str,
    **settings,
) -> FailoverSupervisor:
    """Convenience function to build a supervisor from keyword settings.

    Args:
        link_path: Access symlink
        primary_path: Primary directory
        secondary_path: Secondary copy
        **settings: Any other HadirConfig field

    Returns:
        FailoverSupervisor (not yet bootstrapped)

    Example:
        supervisor = create_supervisor("/data/current", "/mnt/nfs/data", "/srv/copy",
                                       sync_timeout=120)
    """
    config = build_config(overrides=dict(
        link_path=link_path,
        primary_path=primary_path,
        secondary_path=secondary_path,
        **settings,
    ))
    return FailoverSupervisor(config)
