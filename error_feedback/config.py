"""
Configuration management for error-feedback.

Settings live in a small JSON file:

    {
      "version": "1.0",
      "settings": {"poll_interval_ms": 5000, "debounce_ms": 500, ...}
    }

A missing or unreadable file means defaults.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from error_feedback.atomic import AtomicFileWriter
from error_feedback.models import DaemonSettings, SettingsFile
from error_feedback.paths import resolve_config_path


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = resolve_config_path()

MAX_AGE_UNITS = {"d": 24 * 60 * 60, "h": 60 * 60, "m": 60}
_MAX_AGE_RE = re.compile(r"^(\d+)([dhm])$")


def parse_max_age(value: str) -> int:
    """
    Parse a duration like '7d', '24h' or '30m' into seconds.

    Raises:
        ValueError: if the value doesn't match N followed by d, h or m
    """
    match = _MAX_AGE_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid duration '{value}': expected N followed by d, h or m (e.g. 7d)")
    return int(match.group(1)) * MAX_AGE_UNITS[match.group(2)]


class ConfigManager:
    """Loads and saves the settings file."""

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize config manager.

        Args:
            config_file: Path to settings JSON (default: resolved from env)
        """
        self.config_file = Path(config_file) if config_file else resolve_config_path()
        self.config = self.load_config()

    @property
    def settings(self) -> DaemonSettings:
        return self.config.settings

    def load_config(self) -> SettingsFile:
        """Load the settings file, falling back to defaults."""
        if not self.config_file.exists():
            return SettingsFile()

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
            return SettingsFile.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Failed to load config {self.config_file}, using defaults: {e}")
            return SettingsFile()

    def save_config(self) -> None:
        AtomicFileWriter.write_json(self.config_file, self.config.model_dump(mode="json"))

    def update_settings(self, **changes: Any) -> DaemonSettings:
        """
        Apply setting overrides (validated). None values are ignored.

        Raises:
            ValidationError: if an override is out of range
        """
        overrides = {key: value for key, value in changes.items() if value is not None}
        updated = DaemonSettings.model_validate({**self.config.settings.model_dump(), **overrides})
        self.config.settings = updated
        return updated
