"""Tests for error_feedback config module."""

import json

import pytest
from pydantic import ValidationError

from error_feedback.config import ConfigManager, parse_max_age


class TestParseMaxAge:
    """Tests for parse_max_age."""

    @pytest.mark.parametrize("value,expected", [
        ("7d", 7 * 24 * 3600),
        ("24h", 24 * 3600),
        ("30m", 30 * 60),
        (" 1d ", 24 * 3600),
        ("0m", 0),
    ])
    def test_valid(self, value, expected):
        assert parse_max_age(value) == expected

    @pytest.mark.parametrize("value", ["", "7", "d", "7w", "-1d", "1.5h", "7 d"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_max_age(value)


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_missing_file_uses_defaults(self, temp_dir):
        """Test a missing settings file yields defaults."""
        manager = ConfigManager(temp_dir / "error-feedback.json")

        assert manager.config.version == "1.0"
        assert manager.settings.poll_interval_ms == 5000
        assert manager.settings.max_batch_size == 10

    def test_loads_settings(self, temp_dir):
        """Test values from the file override defaults."""
        config_file = temp_dir / "error-feedback.json"
        config_file.write_text(json.dumps({
            "version": "1.0",
            "settings": {"poll_interval_ms": 1000, "watch_enabled": False},
        }))

        manager = ConfigManager(config_file)

        assert manager.settings.poll_interval_ms == 1000
        assert manager.settings.watch_enabled is False
        assert manager.settings.debounce_ms == 500

    def test_corrupt_file_uses_defaults(self, temp_dir, caplog):
        """Test a corrupt settings file falls back to defaults with a warning."""
        config_file = temp_dir / "error-feedback.json"
        config_file.write_text("{broken")

        manager = ConfigManager(config_file)

        assert manager.settings.poll_interval_ms == 5000
        assert "using defaults" in caplog.text

    def test_out_of_range_file_uses_defaults(self, temp_dir):
        config_file = temp_dir / "error-feedback.json"
        config_file.write_text(json.dumps({"settings": {"max_batch_size": 0}}))

        assert ConfigManager(config_file).settings.max_batch_size == 10

    def test_save_and_reload(self, temp_dir):
        """Test saved settings survive a reload."""
        config_file = temp_dir / "nested" / "error-feedback.json"
        manager = ConfigManager(config_file)
        manager.update_settings(debounce_ms=250, cleanup_max_age="2d")

        manager.save_config()

        reloaded = ConfigManager(config_file)
        assert reloaded.settings.debounce_ms == 250
        assert reloaded.settings.cleanup_max_age == "2d"

    def test_update_settings_ignores_none(self, temp_dir):
        manager = ConfigManager(temp_dir / "error-feedback.json")

        settings = manager.update_settings(poll_interval_ms=None, max_batch_size=3)

        assert settings.poll_interval_ms == 5000
        assert settings.max_batch_size == 3
        assert manager.settings is settings

    def test_update_settings_validates(self, temp_dir):
        manager = ConfigManager(temp_dir / "error-feedback.json")

        with pytest.raises(ValidationError):
            manager.update_settings(poll_interval_ms=-5)

        assert manager.settings.poll_interval_ms == 5000

    def test_config_path_from_env(self, temp_dir, monkeypatch):
        """Test OPENCLAW_ERROR_FEEDBACK_CONFIG selects the settings file."""
        config_file = temp_dir / "custom.json"
        monkeypatch.setenv("OPENCLAW_ERROR_FEEDBACK_CONFIG", str(config_file))

        assert ConfigManager().config_file == config_file.resolve()
