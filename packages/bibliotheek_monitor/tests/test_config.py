"""Tests for configuration loading.

These are unit tests that don't require network access or credentials.
"""

import json
from pathlib import Path

import pytest

from bibliotheek_monitor.cli import build_config, build_parser
from bibliotheek_monitor.config import ConfigError, MonitorConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for var in (
        "BIBLIOTHEEK_USERNAME",
        "BIBLIOTHEEK_PASSWORD",
        "BIBLIOTHEEK_POLL_INTERVAL",
        "BIBLIOTHEEK_WARNING_THRESHOLD",
        "BIBLIOTHEEK_STORE",
        "BIBLIOTHEEK_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "monitor.json"
    path.write_text(json.dumps({
        "username": "file@example.com",
        "password": "from-file",
        "poll_interval_minutes": 15,
        "warning_threshold": 5,
    }), encoding="utf-8")
    return path


class TestMonitorConfig:
    """Tests for the MonitorConfig dataclass."""

    def test_defaults(self):
        config = MonitorConfig()
        assert config.poll_interval_seconds == 1800
        assert config.warning_threshold == 7
        assert config.has_credentials is False
        assert config.resolved_store_path == Path("~/.bibliotheek-monitor/state.json").expanduser()

    @pytest.mark.parametrize("kwargs", [
        {"poll_interval_minutes": 0},
        {"warning_threshold": -1},
        {"timeout": 0},
        {"settle_delay": -1},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            MonitorConfig(**kwargs)

    def test_merged_ignores_none(self):
        config = MonitorConfig(username="jan@example.com").merged(username=None, warning_threshold="3")
        assert config.username == "jan@example.com"
        assert config.warning_threshold == 3

    def test_merged_rejects_bad_numbers(self):
        with pytest.raises(ConfigError):
            MonitorConfig().merged(poll_interval_minutes="soon")


class TestConfigSources:
    """Tests for reading the config file and the environment."""

    def test_from_file(self, config_file):
        config = MonitorConfig.from_file(str(config_file))
        assert config.username == "file@example.com"
        assert config.poll_interval_seconds == 900
        assert config.warning_threshold == 5
        assert config.has_credentials is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            MonitorConfig.from_file(str(tmp_path / "absent.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "monitor.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid config file"):
            MonitorConfig.from_file(str(path))

    def test_unknown_keys(self, tmp_path):
        path = tmp_path / "monitor.json"
        path.write_text(json.dumps({"user": "typo"}), encoding="utf-8")
        with pytest.raises(ConfigError, match="user"):
            MonitorConfig.from_file(str(path))

    def test_non_object_root(self, tmp_path):
        path = tmp_path / "monitor.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(ConfigError):
            MonitorConfig.from_file(str(path))

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BIBLIOTHEEK_USERNAME", "env@example.com")
        monkeypatch.setenv("BIBLIOTHEEK_PASSWORD", "from-env")
        monkeypatch.setenv("BIBLIOTHEEK_POLL_INTERVAL", "45")
        monkeypatch.setenv("BIBLIOTHEEK_WARNING_THRESHOLD", "2")

        config = MonitorConfig.from_env()

        assert config.username == "env@example.com"
        assert config.poll_interval_minutes == 45.0
        assert config.warning_threshold == 2

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("BIBLIOTHEEK_WARNING_THRESHOLD", "seven")
        with pytest.raises(ConfigError):
            MonitorConfig.from_env()


class TestBuildConfig:
    """Tests for combining file, environment and command-line flags."""

    def test_flags_override_environment_and_file(self, config_file, monkeypatch):
        monkeypatch.setenv("BIBLIOTHEEK_PASSWORD", "from-env")
        monkeypatch.setenv("BIBLIOTHEEK_WARNING_THRESHOLD", "4")
        args = build_parser().parse_args(["--config", str(config_file), "--threshold", "1"])

        config = build_config(args)

        assert config.username == "file@example.com"
        assert config.password == "from-env"
        assert config.warning_threshold == 1
        assert config.poll_interval_minutes == 15

    def test_without_file(self):
        args = build_parser().parse_args(["-u", "jan@example.com", "-p", "secret", "--interval", "5"])
        config = build_config(args)
        assert config.has_credentials is True
        assert config.poll_interval_seconds == 300
