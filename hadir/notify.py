"""Failover and failback notifications.

Mail is sent by spawning the configured mail program with the body on
stdin. Delivery is best effort: the supervisor never waits for the mailer
and never sees its failures. Finished mailers are reaped on later sends.
"""

import logging
import os
import signal
import socket
import subprocess
from datetime import datetime
from typing import List, Optional

from hadir.config import HadirConfig, Role

logger = logging.getLogger(__name__)

EVENT_FAILOVER = "failover"
EVENT_FAILBACK = "failback"


class Notifier:
    """Fire-and-forget mail dispatch to the configured recipients."""

    def __init__(self, config: HadirConfig, hostname: Optional[str] = None):
        self.config = config
        self.recipients: List[str] = list(config.notify)
        self.hostname = hostname or socket.gethostname()
        self._pending: List[subprocess.Popen] = []
        self.sent_count = 0

    def subject(self, event: str) -> str:
        """Subject line for an event."""
        if event == EVENT_FAILOVER:
            role, verb = Role.SECONDARY, "failed over to"
        else:
            role, verb = Role.PRIMARY, "failed back to"
        return (
            f"hadir: {self.config.link_path} {verb} {role.value} "
            f"{self.config.path_for(role)} on {self.hostname}"
        )

    def notify(self, event: str, reason: str = "") -> bool:
        """Send a notification for ``event``.

        Returns:
            True if a mailer was spawned (not that mail was delivered)
        """
        self._reap()
        subject = self.subject(event)
        body = (
            f"{subject}\n\n"
            f"time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"link: {self.config.link_path}\n"
            f"primary: {self.config.primary_path}\n"
            f"secondary: {self.config.secondary_path}\n"
        )
        if reason:
            body += f"reason: {reason}\n"

        if not self.recipients:
            logger.debug("No recipients configured, not sending: %s", subject)
            return False

        if self.config.pretend:
            logger.info("[pretend] would mail %s: %s", ", ".join(self.recipients), subject)
            self.sent_count += 1
            return True

        cmd = [self.config.mail_command, "-s", subject] + self.recipients
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Could not send notification '%s': %s", subject, e)
            return False

        self._pending.append(proc)
        try:
            proc.stdin.write(body.encode("utf-8"))
            proc.stdin.close()
        except OSError as e:
            logger.warning("Mailer for '%s' did not accept the message: %s", subject, e)
            return False

        self.sent_count += 1
        logger.info("Notified %s: %s", ", ".join(self.recipients), subject)
        return True

    def _reap(self) -> None:
        still_running = []
        for proc in self._pending:
            returncode = proc.poll()
            if returncode is None:
                still_running.append(proc)
            elif returncode != 0:
                logger.warning("Mailer pid %d exited with %d", proc.pid, returncode)
        self._pending = still_running

    def close(self) -> None:
        """Kill mailers that are still running."""
        self._reap()
        for proc in self._pending:
            logger.warning("Killing mailer pid %d on shutdown", proc.pid)
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.error("Mailer pid %d did not exit", proc.pid)
        self._pending = []
