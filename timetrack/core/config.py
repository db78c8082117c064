"""Configuration loader for TimeTrack.

Handles loading, saving, and default creation of config.json.
Resolves platform-appropriate data directories:
  - macOS:   ~/Library/Application Support/TimeTrack
  - Windows: %APPDATA%/TimeTrack
  - Other:   ~/.timetrack
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from timetrack.core.models import TrackerSettings

logger = logging.getLogger(__name__)

# config.json key -> TrackerSettings field
_SETTINGS_KEYS = {
    "poll_interval_seconds": "poll_interval",
    "idle_threshold_seconds": "idle_threshold",
    "min_activity_duration_seconds": "min_activity_duration",
    "merge_threshold_seconds": "merge_threshold",
    "auto_categorize": "auto_categorize",
    "auto_merge": "auto_merge",
    "track_idle_time": "track_idle_time",
}


def get_data_directory() -> Path:
    """Return the platform-appropriate data directory for TimeTrack."""
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    else:
        base = Path.home()
        return base / ".timetrack"
    return base / "TimeTrack"


def get_default_config() -> dict[str, Any]:
    """Return the default configuration dictionary."""
    data_dir = get_data_directory()
    return {
        "poll_interval_seconds": 1,
        "idle_threshold_seconds": 300,
        "min_activity_duration_seconds": 10,
        "merge_threshold_seconds": 30,
        "auto_categorize": True,
        "auto_merge": True,
        "track_idle_time": True,
        "capture_urls": True,
        "retention_days": 90,
        "dashboard_port": 5555,
        "database_path": str(data_dir / "timetrack.db"),
    }


def get_default_config_path() -> Path:
    """Return the default path for config.json."""
    return get_data_directory() / "config.json"


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from a JSON file.

    If *path* is ``None``, the platform default location is used.
    When the file does not exist, a default configuration is created,
    written to disk, and returned.  If the file exists but is invalid
    JSON, the error is logged and defaults are returned.
    """
    config_path = Path(path) if path is not None else get_default_config_path()

    if not config_path.exists():
        logger.info("Config file not found at %s, creating defaults.", config_path)
        defaults = get_default_config()
        save_config(defaults, config_path)
        return defaults

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("Top-level JSON value must be an object")
        return data
    except (json.JSONDecodeError, ValueError, OSError) as exc:
        logger.error("Failed to load config from %s: %s; using defaults.", config_path, exc)
        return get_default_config()


def save_config(config: dict[str, Any], path: str | Path | None = None) -> None:
    """Write *config* to a JSON file, creating parent directories."""
    config_path = Path(path) if path is not None else get_default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)
        fh.write("\n")


def settings_from_config(config: dict[str, Any]) -> TrackerSettings:
    """Build TrackerSettings from a config dict.

    Missing keys keep their defaults. Values of the wrong type, negative
    durations and a non-positive poll interval are logged and ignored.
    """
    settings = TrackerSettings()
    for key, attr in _SETTINGS_KEYS.items():
        if key not in config:
            continue
        value = config[key]
        default = getattr(settings, attr)
        if isinstance(default, bool):
            if isinstance(value, bool):
                setattr(settings, attr, value)
            else:
                logger.warning("Ignoring %s=%r: expected true or false", key, value)
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring %s=%r: expected a number", key, value)
        elif value < 0 or (attr == "poll_interval" and value <= 0):
            logger.warning("Ignoring %s=%r: out of range", key, value)
        else:
            setattr(settings, attr, value)
    return settings


def settings_to_config(settings: TrackerSettings, config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *config* with the tracker settings written back."""
    updated = dict(config)
    for key, attr in _SETTINGS_KEYS.items():
        updated[key] = getattr(settings, attr)
    return updated
