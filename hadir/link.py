"""Inspection and repointing of the access symlink.

The link is the only state hadir shares with consumers. It is rewritten as
remove + create, so there is a short window where it does not exist; a
failure between the two halves leaves it missing until the next cycle.
Shutdown signals are held back while the two halves run.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from hadir.config import HadirConfig, Role
from hadir.process.runner import BoundedProcessRunner, RunResult
from hadir.sync.commands import readlink_command
from hadir.utils.daemon import shutdown_deferred

logger = logging.getLogger(__name__)


class LinkState(Enum):
    """Where the access link currently points."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    UNKNOWN = "unknown"


@dataclass
class LinkStatus:
    """Result of resolving the access link.

    Attributes:
        state: Classification of the link
        target: Canonical target path, None if resolution failed or timed out
        probe: Outcome of the bounded resolution probe
    """
    state: LinkState
    target: Optional[str] = None
    probe: Optional[RunResult] = None

    @property
    def resolved(self) -> bool:
        """True if the link could be followed to an existing directory."""
        return self.target is not None


@dataclass
class RepointResult:
    """Result of a repoint attempt."""
    success: bool
    target: Path
    message: str
    error: Optional[Exception] = None


class LinkController:
    """Reads and rewrites the access link for one HadirConfig."""

    def __init__(self, config: HadirConfig, runner: BoundedProcessRunner):
        self.config = config
        self.runner = runner
        self.link = Path(config.link_path)

    def target_for(self, role: Role) -> Path:
        """Absolute path the link should hold for a role."""
        return Path(os.path.abspath(self.config.path_for(role)))

    def exists(self) -> bool:
        """True if something (even a dangling link) sits at the link path."""
        return os.path.lexists(self.link)

    def raw_target(self) -> Optional[str]:
        """The link's literal contents, without following it."""
        try:
            return os.readlink(self.link)
        except OSError:
            return None

    def resolve(self, timeout: Optional[float] = None) -> LinkStatus:
        """Resolve the link under a timeout and classify it.

        The secondary is local and is canonicalized directly. The primary is
        only canonicalized (again under the timeout) when the link did not
        match the secondary, which means the link resolved through the
        primary and its filesystem is responding.

        Args:
            timeout: Seconds allowed for each resolution; sync_timeout by default

        Returns:
            LinkStatus; UNKNOWN with target None if resolution failed
        """
        timeout = timeout or self.config.sync_timeout

        probe = self.runner.run(readlink_command([self.link]), timeout, capture=True)
        if not probe.succeeded:
            logger.warning("Could not resolve %s: %s", self.link, probe.describe())
            return LinkStatus(LinkState.UNKNOWN, None, probe)

        target = (probe.output or "").strip()
        if not target:
            return LinkStatus(LinkState.UNKNOWN, None, probe)

        if target == os.path.realpath(self.config.secondary_path):
            return LinkStatus(LinkState.SECONDARY, target, probe)

        primary = str(self.target_for(Role.PRIMARY))
        if target == primary:
            return LinkStatus(LinkState.PRIMARY, target, probe)

        canonical = self.runner.run(
            readlink_command([self.config.primary_path]), timeout, capture=True
        )
        if canonical.succeeded and (canonical.output or "").strip() == target:
            return LinkStatus(LinkState.PRIMARY, target, probe)

        logger.error("%s resolves to %s, which is neither primary nor secondary",
                     self.link, target)
        return LinkStatus(LinkState.UNKNOWN, target, probe)

    def repoint(self, role: Role) -> RepointResult:
        """Replace the link with one pointing at ``role``'s directory.

        A missing link is not an error here; the point of a retry is to
        recreate a link that an earlier failed repoint left absent.
        Repointing to the current target just recreates the same link.
        """
        target = self.target_for(role)

        if self.config.pretend:
            logger.info("[pretend] would point %s at %s", self.link, target)
            return RepointResult(True, target, "pretend")

        with shutdown_deferred():
            try:
                os.remove(self.link)
            except FileNotFoundError:
                logger.warning("%s was already missing before repoint", self.link)
            except OSError as e:
                logger.error("Cannot remove %s: %s", self.link, e)
                return RepointResult(False, target, f"remove failed: {e}", e)

            try:
                os.symlink(target, self.link)
            except OSError as e:
                logger.error("Cannot create %s -> %s: %s", self.link, target, e)
                return RepointResult(False, target, f"create failed: {e}", e)

        logger.info("Pointed %s at %s (%s)", self.link, target, role.value)
        return RepointResult(True, target, "ok")
