from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

from emuident import config
from emuident.common.exceptions import ConfigurationError
from emuident.logging_cfg import get_logger

DEFAULT_SOURCES: dict[str, dict[str, Any]] = {
    "local": {"enabled": True, "priority": 100, "interval": 0.0, "timeout": config.DEFAULT_SOURCE_TIMEOUT_S},
    "hasheous": {
        "enabled": True,
        "priority": 50,
        "interval": config.DEFAULT_SOURCE_INTERVAL_S,
        "timeout": config.DEFAULT_SOURCE_TIMEOUT_S,
        "api_key": "",
    },
    "thegamesdb": {
        "enabled": True,
        "priority": 10,
        "interval": config.DEFAULT_SOURCE_INTERVAL_S,
        "timeout": config.DEFAULT_SOURCE_TIMEOUT_S,
        "api_key": "",
    },
}


class ConfigManager:
    """Persists user settings as JSON, merged over the built-in defaults."""

    def __init__(self, config_file: Path | str = config.SETTINGS_FILENAME):
        self.config_path = Path(config_file)
        self.values: dict[str, Any] = {}
        self.logger = get_logger("core.config")
        self.load()

    @staticmethod
    def defaults() -> dict[str, Any]:
        return {
            "base_dir": config.BASE_DEFAULT,
            "dats_dir": "",
            "extensions": sorted(config.DEFAULT_EXTENSIONS),
            "hash_workers": config.MAX_HASH_WORKERS,
            "sources": copy.deepcopy(DEFAULT_SOURCES),
        }

    def load(self) -> None:
        """Load settings from disk; a missing or corrupt file leaves the defaults."""
        self.values = self.defaults()

        if not self.config_path.exists():
            return
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.warning("Ignoring unreadable settings %s: %s", self.config_path, e)
            return
        if not isinstance(stored, dict):
            self.logger.warning("Ignoring settings %s: top level is not an object", self.config_path)
            return

        sources = stored.pop("sources", None)
        self.values.update(stored)
        if isinstance(sources, dict):
            for name, settings in sources.items():
                if isinstance(settings, dict):
                    self.values["sources"].setdefault(name, {}).update(settings)

    def save(self) -> bool:
        """Write the current settings to disk."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.values, f, indent=4, ensure_ascii=False)
            return True
        except OSError as e:
            self.logger.error("Could not save settings %s: %s", self.config_path, e)
            return False

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def source_settings(self, name: str) -> dict[str, Any]:
        """Settings of one identity source.

        Raises:
            ConfigurationError: priority, interval or timeout is not a number,
                or a pacing value is negative.
        """
        settings = dict(self.values.get("sources", {}).get(name, {}))
        for key in ("priority", "interval", "timeout"):
            value = settings.get(key)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"sources.{name}.{key} must be a number", {"value": value})
            if key != "priority" and value < 0:
                raise ConfigurationError(f"sources.{name}.{key} must not be negative", {"value": value})
        return settings
