"""Unit tests for hallcal.config_loader."""

import os
from pathlib import Path

import pytest
import yaml

from hallcal.config_loader import AppConfig, env_overrides, load_config, load_env_file

pytestmark = [pytest.mark.unit, pytest.mark.fast]

CONFIG_YAML = """
feeds:
  - id: work
    name: Work
    url: https://example.com/work.ics
    color: "#ff0000"
    refreshMinutes: 10
  - not-a-mapping
default_refresh_minutes: 10
max_occurrences: 200
display_timezone: Europe/London
log_level: debug
server_port: "9090"
"""


@pytest.fixture
def env_file_keys():
    """Remove keys a test's .env file put into the environment."""
    keys = []
    yield keys
    for key in keys:
        os.environ.pop(key, None)


@pytest.fixture
def missing_env_file(tmp_path) -> Path:
    return tmp_path / "absent.env"


class TestAppConfigFromDict:
    """Tests for AppConfig.from_dict."""

    def test_from_dict_when_empty_then_defaults(self) -> None:
        """Test an empty mapping gives the documented defaults."""
        cfg = AppConfig.from_dict({})

        assert cfg == AppConfig()
        assert cfg.default_refresh_minutes == 5
        assert cfg.min_refresh_minutes == 1
        assert cfg.max_refresh_minutes == 60
        assert cfg.recurrence_days_past == 7
        assert cfg.recurrence_days_future == 90
        assert cfg.max_occurrences == 500
        assert cfg.server_port == 8080

    def test_from_dict_when_none_then_defaults(self) -> None:
        """Test None is treated as an empty mapping."""
        assert AppConfig.from_dict(None) == AppConfig()

    def test_from_dict_when_numeric_strings_then_coerced(self) -> None:
        """Test numeric-like strings are converted."""
        cfg = AppConfig.from_dict({"server_port": "9000", "request_timeout": "12.5"})

        assert cfg.server_port == 9000
        assert cfg.request_timeout == 12.5

    def test_from_dict_when_garbage_number_then_default_with_warning(self, caplog) -> None:
        """Test unusable numbers fall back to their default."""
        cfg = AppConfig.from_dict({"max_occurrences": "lots", "max_retries": -1})

        assert cfg.max_occurrences == 500
        assert cfg.max_retries == 2
        assert "max_occurrences" in caplog.text

    def test_from_dict_when_refresh_bounds_inconsistent_then_defaults(self) -> None:
        """Test a default outside [min, max] resets all three bounds."""
        cfg = AppConfig.from_dict(
            {"min_refresh_minutes": 10, "max_refresh_minutes": 20, "default_refresh_minutes": 5}
        )

        assert (cfg.min_refresh_minutes, cfg.default_refresh_minutes, cfg.max_refresh_minutes) == (
            1,
            5,
            60,
        )

    def test_from_dict_when_feeds_not_list_then_ignored(self) -> None:
        """Test a non-list feeds value is dropped."""
        assert AppConfig.from_dict({"feeds": {"id": "x"}}).feeds == []

    @pytest.mark.parametrize("raw, expected", [("yes", True), ("0", False), (1, True), ("", False)])
    def test_from_dict_when_debug_variants_then_boolean(self, raw, expected) -> None:
        """Test debug accepts the usual truthy spellings."""
        assert AppConfig.from_dict({"debug": raw}).debug is expected


class TestEnvironment:
    """Tests for .env loading and HALLCAL_* overrides."""

    def test_load_env_file_when_present_then_sets_missing_keys_only(
        self, tmp_path, monkeypatch, env_file_keys
    ) -> None:
        """Test .env never overrides variables that are already set."""
        env_path = tmp_path / ".env"
        env_path.write_text(
            "# comment\nHALLCAL_WEB_HOST='127.0.0.1'\nHALLCAL_WEB_PORT=7000\nnot a pair\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("HALLCAL_WEB_PORT", "9999")
        env_file_keys.append("HALLCAL_WEB_HOST")

        set_keys = load_env_file(env_path)

        assert set_keys == ["HALLCAL_WEB_HOST"]
        assert os.environ["HALLCAL_WEB_HOST"] == "127.0.0.1"
        assert os.environ["HALLCAL_WEB_PORT"] == "9999"

    def test_load_env_file_when_missing_then_noop(self, missing_env_file) -> None:
        """Test a missing .env file is not an error."""
        assert load_env_file(missing_env_file) == []

    def test_env_overrides_when_set_then_mapped(self, monkeypatch) -> None:
        """Test every recognized variable maps to its config key."""
        monkeypatch.setenv("HALLCAL_TIMEZONE", "Asia/Tokyo")
        monkeypatch.setenv("HALLCAL_WEB_HOST", "localhost")
        monkeypatch.setenv("HALLCAL_WEB_PORT", "8181")
        monkeypatch.setenv("HALLCAL_LOG_LEVEL", "warning")
        monkeypatch.setenv("HALLCAL_DEBUG", "true")

        assert env_overrides() == {
            "display_timezone": "Asia/Tokyo",
            "server_bind": "localhost",
            "server_port": 8181,
            "log_level": "warning",
            "debug": True,
        }

    def test_env_overrides_when_port_invalid_then_skipped(self, monkeypatch) -> None:
        """Test a non-numeric port is ignored."""
        monkeypatch.setenv("HALLCAL_WEB_PORT", "eighty")

        assert "server_port" not in env_overrides()


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_config_when_yaml_file_then_values_loaded(self, tmp_path, missing_env_file) -> None:
        """Test values come from the YAML file and bad feed entries are dropped."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        cfg = load_config(str(path), env_file=missing_env_file)

        assert [feed["id"] for feed in cfg.feeds] == ["work"]
        assert cfg.feeds[0]["refreshMinutes"] == 10
        assert cfg.default_refresh_minutes == 10
        assert cfg.max_occurrences == 200
        assert cfg.display_timezone == "Europe/London"
        assert cfg.log_level == "DEBUG"
        assert cfg.server_port == 9090

    def test_load_config_when_env_set_then_env_wins(
        self, tmp_path, monkeypatch, missing_env_file
    ) -> None:
        """Test HALLCAL_* variables override file values."""
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")
        monkeypatch.setenv("HALLCAL_WEB_PORT", "7070")
        monkeypatch.setenv("HALLCAL_TIMEZONE", "UTC")

        cfg = load_config(str(path), env_file=missing_env_file)

        assert cfg.server_port == 7070
        assert cfg.display_timezone == "UTC"

    def test_load_config_when_path_from_env_then_used(
        self, tmp_path, monkeypatch, missing_env_file
    ) -> None:
        """Test HALLCAL_CONFIG selects the file."""
        path = tmp_path / "other.yaml"
        path.write_text("server_port: 6060\n", encoding="utf-8")
        monkeypatch.setenv("HALLCAL_CONFIG", str(path))

        assert load_config(env_file=missing_env_file).server_port == 6060

    def test_load_config_when_file_missing_then_defaults(self, tmp_path, missing_env_file) -> None:
        """Test a missing file gives defaults."""
        cfg = load_config(str(tmp_path / "nope.yaml"), env_file=missing_env_file)

        assert cfg == AppConfig()

    def test_load_config_when_file_empty_then_defaults(self, tmp_path, missing_env_file) -> None:
        """Test an empty YAML file gives defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(str(path), env_file=missing_env_file) == AppConfig()

    def test_load_config_when_top_level_not_mapping_then_value_error(
        self, tmp_path, missing_env_file
    ) -> None:
        """Test a YAML list at top level is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            load_config(str(path), env_file=missing_env_file)

    def test_load_config_when_invalid_yaml_then_yaml_error(self, tmp_path, missing_env_file) -> None:
        """Test malformed YAML propagates the parser error."""
        path = tmp_path / "bad.yaml"
        path.write_text("feeds: [unclosed\n", encoding="utf-8")

        with pytest.raises(yaml.YAMLError):
            load_config(str(path), env_file=missing_env_file)
