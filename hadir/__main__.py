"""CLI entry point for hadir.

Usage:
    hadir -l LINK -p PRIMARY -s SECONDARY [options]
    hadir -c /etc/hadird.yaml [-d] [--pid-file /var/run/hadird.pid]
    python -m hadir -c hadird.yaml --once --pretend

Settings come from the config file (YAML) and are overridden by the
command line. Exit codes: 2 configuration error, 3 bootstrap found the
link pointing somewhere unexpected, 4 another instance holds the pid
file. The supervision loop itself never returns on its own; a
termination signal stops it.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from hadir import __version__
from hadir.config import (
    DEFAULT_CONFIG_FILE,
    ConfigurationError,
    build_config,
    load_config_file,
)
from hadir.supervisor import BootstrapError, FailoverSupervisor
from hadir.utils.daemon import (
    AlreadyRunning,
    check_not_running,
    daemonize,
    install_shutdown_handlers,
    pid_lock,
)
from hadir.utils.logging import configure_root_logger

logger = logging.getLogger("hadir")

EXIT_CONFIG = 2
EXIT_BOOTSTRAP = 3
EXIT_RUNNING = 4


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="hadir",
        description="Maintain a highly-available directory using a primary, "
                    "a secondary copy, and a symbolic link.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config", type=Path, default=None,
        help=f"YAML config file (default: {DEFAULT_CONFIG_FILE} if it exists)",
    )

    paths = parser.add_argument_group("directories")
    paths.add_argument("-l", "--link", dest="link_path", help="Access symlink consumers use")
    paths.add_argument("-p", "--primary", dest="primary_path", help="Primary directory")
    paths.add_argument("-s", "--secondary", dest="secondary_path", help="Secondary copy")

    timing = parser.add_argument_group("timing")
    timing.add_argument(
        "-t", "--sync-timeout", dest="sync_timeout", type=float,
        help="Seconds before a sync is killed (default: 300)",
    )
    timing.add_argument(
        "-i", "--sleep-interval", dest="sleep_interval", type=float,
        help="Seconds between cycles (default: 60)",
    )
    timing.add_argument(
        "-w", "--write-probe", dest="write_probe",
        help="Shell command that writes to the primary's storage",
    )
    timing.add_argument(
        "--write-probe-timeout", dest="write_probe_timeout", type=float,
        help="Seconds before the write probe is killed (default: 30)",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--log-file", dest="log_file", help="Log destination (default: stderr)")
    output.add_argument("--log-format", dest="log_format", choices=["text", "json"])
    output.add_argument("--output-file", dest="output_file",
                        help="Where rsync and probe output goes (default: discarded)")
    output.add_argument(
        "-n", "--notify", dest="notify", action="append",
        help="Mail failover/failback events to this address (repeatable)",
    )
    output.add_argument("-v", "--verbose", dest="verbose", action="store_true", default=None,
                        help="Enable debug logging")

    run = parser.add_argument_group("running")
    run.add_argument("--pretend", dest="pretend", action="store_true", default=None,
                     help="Dry-run every sync, never touch the link, never send mail")
    run.add_argument("-d", "--daemonize", dest="daemonize", action="store_true", default=None,
                     help="Detach and run in the background")
    run.add_argument("--pid-file", dest="pid_file", help="Pid file, also locks out a second instance")
    run.add_argument("--once", action="store_true",
                     help="Bootstrap, run a single cycle, print status and exit")

    return parser


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Pick the HadirConfig fields out of parsed arguments."""
    skip = {"config", "once"}
    return {key: value for key, value in vars(args).items() if key not in skip}


def load_settings(args: argparse.Namespace) -> Dict[str, Any]:
    """Read the config file named on the command line, or the default one."""
    if args.config is not None:
        return load_config_file(args.config)
    if DEFAULT_CONFIG_FILE.exists():
        return load_config_file(DEFAULT_CONFIG_FILE)
    return {}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (non-zero for configuration, bootstrap and lock errors)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(load_settings(args), config_overrides(args))
        check_not_running(config.pid_file)
    except AlreadyRunning as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RUNNING
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    if config.daemonize:
        daemonize()

    configure_root_logger(
        level=logging.DEBUG if config.verbose else logging.INFO,
        json_output=config.log_format == "json",
        log_file=config.log_file,
        console=config.log_file is None,
    )
    install_shutdown_handlers()

    try:
        with pid_lock(config.pid_file), FailoverSupervisor(config) as supervisor:
            supervisor.bootstrap()
            supervisor.run(max_cycles=1 if args.once else None)
            if args.once:
                print(json.dumps(supervisor.status(), indent=2, default=str))
    except AlreadyRunning as e:
        logger.critical("Not starting: %s", e)
        return EXIT_RUNNING
    except BootstrapError as e:
        logger.critical("Bootstrap failed: %s", e)
        return EXIT_BOOTSTRAP
    except ConfigurationError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG
    except SystemExit as e:
        logger.info("Stopped by signal, child processes cleaned up")
        return e.code if isinstance(e.code, int) else 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
