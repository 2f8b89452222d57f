"""Configuration dataclasses and config file loading for hadir."""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


DEFAULT_CONFIG_FILE = Path("/etc/hadird.yaml")

_PATH_FIELDS = ("link_path", "primary_path", "secondary_path",
                "log_file", "output_file", "pid_file")


class HadirError(Exception):
    """Base class for hadir errors."""


class ConfigurationError(HadirError):
    """Fatal configuration problem; the process exits without repair."""


class Role(Enum):
    """Which of the two directories a path belongs to."""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Mode(Enum):
    """Operating mode of the supervisor."""
    NORMAL = "normal"       # link -> primary, primary mirrored onto secondary
    FAILOVER = "failover"   # link -> secondary, primary probed for recovery


@dataclass
class HadirConfig:
    """Configuration for one supervised directory.

    Attributes:
        link_path: The access symlink consumers use
        primary_path: Primary directory (source of truth while healthy)
        secondary_path: Local copy served while the primary is down
        sync_timeout: Seconds before a sync (or link probe) is killed
        sleep_interval: Seconds to sleep between cycles
        write_probe: Shell command that writes to the primary's storage
        write_probe_timeout: Seconds before the write probe is killed
        log_file: Log destination (stderr if not set)
        log_format: "text" or "json"
        output_file: Where child process output goes (discarded if not set)
        stamp_output: Write a timestamp marker before each command's output
        notify: Recipient addresses for failover/failback mail
        mail_command: Mail program used for notifications
        rsync_command: Directory sync program
        rsync_options: Extra options passed to every rsync invocation
        verbose: Log at DEBUG level
        pretend: Dry-run everything, never touch the link
        daemonize: Detach from the controlling terminal
        pid_file: Pid file lock; a second instance using it is refused
    """
    link_path: Optional[Path] = None
    primary_path: Optional[Path] = None
    secondary_path: Optional[Path] = None
    sync_timeout: float = 300.0
    sleep_interval: float = 60.0
    write_probe: Optional[str] = None
    write_probe_timeout: float = 30.0
    log_file: Optional[Path] = None
    log_format: str = "text"
    output_file: Optional[Path] = None
    stamp_output: bool = True
    notify: List[str] = field(default_factory=list)
    mail_command: str = "mail"
    rsync_command: str = "rsync"
    rsync_options: List[str] = field(default_factory=list)
    verbose: bool = False
    pretend: bool = False
    daemonize: bool = False
    pid_file: Optional[Path] = None

    def __post_init__(self):
        """Ensure paths are Path objects."""
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, Path(value))
        if isinstance(self.notify, str):
            self.notify = [self.notify]
        if isinstance(self.rsync_options, str):
            self.rsync_options = self.rsync_options.split()

    def path_for(self, role: Role) -> Path:
        """Return the configured directory for a role."""
        return self.primary_path if role is Role.PRIMARY else self.secondary_path

    def validate(self) -> None:
        """Check the configuration, raising ConfigurationError on the first problem."""
        self._check_types()

        for name in ("link_path", "primary_path", "secondary_path"):
            if getattr(self, name) is None:
                raise ConfigurationError(f"{name.replace('_', ' ')} is required")

        if self.primary_path == self.secondary_path:
            raise ConfigurationError("primary and secondary must be different directories")
        if self.link_path in (self.primary_path, self.secondary_path):
            raise ConfigurationError("link path must differ from both directories")

        for name in ("sync_timeout", "sleep_interval", "write_probe_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.log_format not in ("text", "json"):
            raise ConfigurationError(f"unknown log format: {self.log_format}")

        if self.daemonize:
            # The daemon changes directory to /, relative paths would move.
            for name in _PATH_FIELDS:
                value = getattr(self, name)
                if value is not None and not value.is_absolute():
                    raise ConfigurationError(
                        f"{name} must be an absolute path when daemonizing: {value}"
                    )

    def _check_types(self) -> None:
        # Values from YAML arrive with whatever type the file gave them.
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                raise ConfigurationError(f"{name} must be a path, got {value!r}")

        for name in ("sync_timeout", "sleep_interval", "write_probe_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{name} must be a number")

        for name in ("mail_command", "rsync_command", "log_format"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigurationError(f"{name} must be a non-empty string, got {value!r}")
        if self.write_probe is not None and not isinstance(self.write_probe, str):
            raise ConfigurationError(f"write_probe must be a string, got {self.write_probe!r}")

        for name in ("notify", "rsync_options"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigurationError(f"{name} must be a list of strings, got {value!r}")

        for name in ("stamp_output", "verbose", "pretend", "daemonize"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"{name} must be true or false")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = str(value) if isinstance(value, Path) else value
        return result


_FIELD_NAMES = {f.name for f in fields(HadirConfig)}


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load a YAML config file into a dict of HadirConfig field values.

    Keys may be written with dashes or underscores. The file is parsed with
    yaml.safe_load, so nothing in it is ever executed.

    Args:
        path: Config file location

    Returns:
        Mapping of field name to value

    Raises:
        ConfigurationError: File unreadable, malformed, or has unknown keys
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"malformed config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")

    values = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in _FIELD_NAMES:
            raise ConfigurationError(f"unknown setting '{key}' in {path}")
        values[name] = value
    return values


def build_config(
    file_values: Optional[Dict[str, Any]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HadirConfig:
    """Merge defaults, config file values and command-line overrides.

    Overrides whose value is None are ignored, so unset CLI options never
    mask a value from the config file.

    Returns:
        Validated HadirConfig
    """
    merged: Dict[str, Any] = dict(file_values or {})
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in _FIELD_NAMES:
            raise ConfigurationError(f"unknown setting '{key}'")
        merged[key] = value

    try:
        config = HadirConfig(**merged)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e

    for name in ("sync_timeout", "sleep_interval", "write_probe_timeout"):
        try:
            setattr(config, name, float(getattr(config, name)))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{name} must be a number") from e

    config.validate()
    return config
