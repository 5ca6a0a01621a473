"""Settings management for sshkeeper."""

import json
import os
import platform
from pathlib import Path
from typing import Any

from sshkeeper.core.errors import StorageError

DEFAULT_SETTINGS_FILENAME = "config.json"

DEFAULTS: dict[str, Any] = {
    "ssh_dir": None,
    "log_level": "WARNING",
    "keygen": {
        "executable": "ssh-keygen",
        "keyscan_executable": "ssh-keyscan",
    },
    "backup": {
        "safety_backup": True,
    },
}


def get_settings_dir() -> Path:
    """Get the settings directory based on OS.

    Returns:
        Path to the settings directory.
        - Linux/macOS: ~/.config/sshkeeper
        - Windows: %APPDATA%/sshkeeper
    """
    if platform.system() == "Windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "sshkeeper"
        return Path.home() / "AppData" / "Roaming" / "sshkeeper"
    return Path.home() / ".config" / "sshkeeper"


def get_default_settings_path() -> Path:
    """Get the default settings file path."""
    return get_settings_dir() / DEFAULT_SETTINGS_FILENAME


class Settings:
    """Read-only view of the JSON settings file over built-in defaults."""

    def __init__(self, data: dict[str, Any] | None = None, path: Path | None = None) -> None:
        """Initialize settings.

        Args:
            data: Values read from a settings file.
            path: File the values came from, for messages.
        """
        self._data = data or {}
        self._path = path

    @classmethod
    def from_file(cls, path: Path) -> "Settings":
        """Load settings from a JSON file. A missing file leaves the defaults.

        Raises:
            StorageError: If the file exists but is unreadable or not a JSON object.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return cls(path=path)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read settings {path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Settings file {path} must contain a JSON object")
        return cls(data, path)

    @property
    def path(self) -> Path | None:
        """Get the settings file path, if any."""
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting, falling back to the built-in defaults.

        Args:
            key: Setting key (supports dot notation).
            default: Value returned if neither the file nor the defaults have the key.

        Returns:
            Setting value.
        """
        for source in (self._data, DEFAULTS):
            value: Any = source
            for k in key.split("."):
                if isinstance(value, dict) and k in value:
                    value = value[k]
                else:
                    break
            else:
                if value is not None:
                    return value
        return default
