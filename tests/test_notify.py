"""Tests for hadir.notify module."""

import logging
import stat

import pytest

from hadir.notify import EVENT_FAILBACK, EVENT_FAILOVER, Notifier

from conftest import process_alive, wait_until


@pytest.fixture
def fake_mail(tmp_path):
    """A mail program that records its arguments and stdin."""
    args_file = tmp_path / "mail.args"
    body_file = tmp_path / "mail.body"
    script = tmp_path / "fake-mail"
    script.write_text(
        "#!/bin/sh\n"
        f'printf "%s\\n" "$@" > "{args_file}"\n'
        f'cat > "{body_file}"\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return {"command": str(script), "args": args_file, "body": body_file}


def wait_for_mailers(notifier):
    for proc in notifier._pending:
        proc.wait(timeout=10)


class TestSubject:
    def test_failover_subject(self, hadir_config):
        subject = Notifier(hadir_config, hostname="nas1").subject(EVENT_FAILOVER)
        assert "failed over to secondary" in subject
        assert str(hadir_config.secondary_path) in subject
        assert subject.endswith("on nas1")

    def test_failback_subject(self, hadir_config):
        subject = Notifier(hadir_config, hostname="nas1").subject(EVENT_FAILBACK)
        assert "failed back to primary" in subject
        assert str(hadir_config.primary_path) in subject


class TestNotify:
    def test_sends_mail(self, hadir_config, fake_mail):
        hadir_config.mail_command = fake_mail["command"]
        hadir_config.notify = ["ops@example.com", "oncall@example.com"]
        notifier = Notifier(hadir_config, hostname="nas1")

        assert notifier.notify(EVENT_FAILOVER, "sync timed out") is True
        wait_for_mailers(notifier)

        args = fake_mail["args"].read_text().splitlines()
        assert args[0] == "-s"
        assert "failed over" in args[1]
        assert args[2:] == ["ops@example.com", "oncall@example.com"]
        body = fake_mail["body"].read_text()
        assert "reason: sync timed out" in body
        assert f"link: {hadir_config.link_path}" in body
        notifier.close()

    def test_no_recipients(self, hadir_config):
        hadir_config.notify = []
        notifier = Notifier(hadir_config)
        assert notifier.notify(EVENT_FAILOVER) is False
        assert notifier.sent_count == 0

    def test_missing_mail_program_is_swallowed(self, hadir_config, caplog):
        hadir_config.mail_command = "/nonexistent/hadir-mail"
        notifier = Notifier(hadir_config)
        with caplog.at_level(logging.WARNING):
            assert notifier.notify(EVENT_FAILBACK) is False
        assert "Could not send notification" in caplog.text

    def test_pretend_does_not_spawn(self, hadir_config, fake_mail):
        hadir_config.mail_command = fake_mail["command"]
        hadir_config.pretend = True
        notifier = Notifier(hadir_config)
        assert notifier.notify(EVENT_FAILOVER) is True
        assert notifier._pending == []
        assert not fake_mail["args"].exists()

    def test_finished_mailers_are_reaped(self, hadir_config, fake_mail):
        hadir_config.mail_command = fake_mail["command"]
        notifier = Notifier(hadir_config)
        notifier.notify(EVENT_FAILOVER)
        wait_for_mailers(notifier)
        notifier.notify(EVENT_FAILBACK)
        assert len(notifier._pending) == 1
        assert notifier.sent_count == 2
        notifier.close()
        assert notifier._pending == []

    def test_close_kills_stuck_mailer(self, hadir_config, tmp_path):
        script = tmp_path / "stuck-mail"
        script.write_text("#!/bin/sh\nexec sleep 30\n")
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        hadir_config.mail_command = str(script)

        notifier = Notifier(hadir_config)
        notifier.notify(EVENT_FAILOVER)
        proc = notifier._pending[0]
        notifier.close()
        assert proc.poll() is not None

    def test_close_kills_mailer_helpers(self, hadir_config, tmp_path):
        helper_pid = tmp_path / "helper.pid"
        script = tmp_path / "forking-mail"
        script.write_text(f'#!/bin/sh\nsleep 30 &\necho $! > "{helper_pid}"\nwait\n')
        script.chmod(script.stat().st_mode | stat.S_IEXEC)
        hadir_config.mail_command = str(script)

        notifier = Notifier(hadir_config)
        notifier.notify(EVENT_FAILOVER)
        wait_until(lambda: helper_pid.exists() and helper_pid.read_text().strip())
        pid = int(helper_pid.read_text())

        notifier.close()

        wait_until(lambda: not process_alive(pid))

