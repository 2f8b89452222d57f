"""Tests for hadir.config module.

Validates configuration dataclasses, enums, path coercion, YAML loading
and validation.
"""

from pathlib import Path

import pytest

from hadir.config import (
    ConfigurationError,
    HadirConfig,
    Mode,
    Role,
    build_config,
    load_config_file,
)


REQUIRED = {
    "link_path": "/data/current",
    "primary_path": "/mnt/nfs/data",
    "secondary_path": "/srv/copy",
}


class TestEnums:
    def test_mode_values(self):
        assert Mode.NORMAL.value == "normal"
        assert Mode.FAILOVER.value == "failover"

    def test_role_values(self):
        assert Role("primary") is Role.PRIMARY
        assert Role("secondary") is Role.SECONDARY

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            Mode("degraded")


class TestHadirConfig:
    """Test HadirConfig dataclass behavior."""

    def test_defaults(self):
        config = HadirConfig()
        assert config.sync_timeout == 300.0
        assert config.sleep_interval == 60.0
        assert config.write_probe is None
        assert config.write_probe_timeout == 30.0
        assert config.notify == []
        assert config.stamp_output is True
        assert config.pretend is False

    def test_string_path_coercion(self):
        config = HadirConfig(**REQUIRED, log_file="/var/log/hadir.log")
        assert isinstance(config.link_path, Path)
        assert isinstance(config.log_file, Path)
        assert config.primary_path == Path("/mnt/nfs/data")

    def test_single_recipient_string(self):
        assert HadirConfig(notify="ops@example.com").notify == ["ops@example.com"]

    def test_rsync_options_string_split(self):
        config = HadirConfig(rsync_options="--exclude .snapshot")
        assert config.rsync_options == ["--exclude", ".snapshot"]

    def test_path_for(self):
        config = HadirConfig(**REQUIRED)
        assert config.path_for(Role.PRIMARY) == Path("/mnt/nfs/data")
        assert config.path_for(Role.SECONDARY) == Path("/srv/copy")

    def test_to_dict(self):
        d = HadirConfig(**REQUIRED).to_dict()
        assert d["link_path"] == "/data/current"
        assert d["log_file"] is None


class TestValidate:
    def test_valid(self):
        HadirConfig(**REQUIRED).validate()

    @pytest.mark.parametrize("missing", sorted(REQUIRED))
    def test_required_paths(self, missing):
        values = dict(REQUIRED)
        del values[missing]
        with pytest.raises(ConfigurationError, match="required"):
            HadirConfig(**values).validate()

    def test_same_directories(self):
        with pytest.raises(ConfigurationError):
            HadirConfig(link_path="/a", primary_path="/b", secondary_path="/b").validate()

    def test_link_equals_directory(self):
        with pytest.raises(ConfigurationError):
            HadirConfig(link_path="/b", primary_path="/b", secondary_path="/c").validate()

    @pytest.mark.parametrize("name", ["sync_timeout", "sleep_interval", "write_probe_timeout"])
    def test_non_positive_timings(self, name):
        with pytest.raises(ConfigurationError, match=name):
            HadirConfig(**REQUIRED, **{name: 0}).validate()

    def test_unknown_log_format(self):
        with pytest.raises(ConfigurationError):
            HadirConfig(**REQUIRED, log_format="xml").validate()

    def test_daemonize_requires_absolute_paths(self):
        values = dict(REQUIRED, secondary_path="relative/copy")
        HadirConfig(**values).validate()
        with pytest.raises(ConfigurationError, match="absolute"):
            HadirConfig(**values, daemonize=True).validate()

    def test_daemonize_checks_log_file(self):
        with pytest.raises(ConfigurationError, match="log_file"):
            HadirConfig(**REQUIRED, daemonize=True, log_file="hadir.log").validate()


class TestLoadConfigFile:
    def test_load(self, tmp_path):
        path = tmp_path / "hadird.yaml"
        path.write_text(
            "link-path: /data/current\n"
            "primary_path: /mnt/nfs/data\n"
            "secondary-path: /srv/copy\n"
            "sync-timeout: 120\n"
            "notify:\n"
            "  - ops@example.com\n"
            "  - oncall@example.com\n"
        )
        values = load_config_file(path)
        assert values["link_path"] == "/data/current"
        assert values["secondary_path"] == "/srv/copy"
        assert values["sync_timeout"] == 120
        assert values["notify"] == ["ops@example.com", "oncall@example.com"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config_file(path) == {}

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("primary_path: /a\nsecondry_path: /b\n")
        with pytest.raises(ConfigurationError, match="secondry_path"):
            load_config_file(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- /a\n- /b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config_file(path)

    def test_malformed(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("primary_path: [unclosed\n")
        with pytest.raises(ConfigurationError, match="malformed"):
            load_config_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="cannot read"):
            load_config_file(tmp_path / "nope.yaml")

    def test_shell_syntax_is_not_executed(self, tmp_path):
        path = tmp_path / "old.conf"
        marker = tmp_path / "executed"
        path.write_text(f"PRIMARY=/a; touch {marker}\n")
        with pytest.raises(ConfigurationError):
            load_config_file(path)
        assert not marker.exists()


class TestBuildConfig:
    def test_overrides_win(self):
        config = build_config(
            dict(REQUIRED, sync_timeout=100),
            {"sync_timeout": 20, "primary_path": "/mnt/other"},
        )
        assert config.sync_timeout == 20.0
        assert config.primary_path == Path("/mnt/other")

    def test_none_overrides_ignored(self):
        config = build_config(dict(REQUIRED, sleep_interval=5), {"sleep_interval": None})
        assert config.sleep_interval == 5.0

    def test_numeric_strings_converted(self):
        config = build_config(dict(REQUIRED, sync_timeout="45"))
        assert config.sync_timeout == 45.0

    def test_bad_number(self):
        with pytest.raises(ConfigurationError, match="sync_timeout"):
            build_config(dict(REQUIRED, sync_timeout="soon"))

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError):
            build_config(REQUIRED, {"colour": "red"})

    def test_validates(self):
        with pytest.raises(ConfigurationError):
            build_config({"link_path": "/x"})

    @pytest.mark.parametrize("name,value", [
        ("notify", 5),
        ("notify", ["ops@example.com", 7]),
        ("rsync_options", 5),
        ("rsync_options", {"exclude": ".snapshot"}),
        ("primary_path", 42),
        ("log_file", ["/var/log/hadir.log"]),
        ("write_probe", ["touch", "/mnt/nfs/data/.probe"]),
        ("mail_command", 5),
        ("rsync_command", None),
        ("pretend", "yes"),
    ])
    def test_wrong_value_types(self, name, value):
        with pytest.raises(ConfigurationError, match=name):
            build_config(dict(REQUIRED, **{name: value}))

    def test_wrong_type_from_file(self, tmp_path):
        path = tmp_path / "hadird.yaml"
        path.write_text("notify: 5\nrsync_options: --exclude .snapshot\n")
        with pytest.raises(ConfigurationError, match="notify"):
            build_config(dict(REQUIRED, **load_config_file(path)))


def test_error_hierarchy():
    from hadir import BootstrapError, HadirError

    assert issubclass(ConfigurationError, HadirError)
    assert issubclass(BootstrapError, ConfigurationError)
