"""Configuration utilities for the watchfolder CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from watchfolder.core.config import ConfigurationError, WatchConfig


def get_config_dir() -> Path:
    """Get the configuration directory for watchfolder.

    Returns:
        Path to ~/.watchfolder or equivalent.
    """
    return Path.home() / ".watchfolder"


def get_config_file() -> Path:
    """Get the path to the default config file."""
    return get_config_dir() / "config.json"


def read_config_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file.

    Raises:
        ConfigurationError: If the file is missing or not a JSON object.
    """
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a JSON object")
    return data


def load_config(path: Path | None = None) -> WatchConfig:
    """Load and validate the watch configuration.

    Args:
        path: Config file, defaults to get_config_file().

    Raises:
        ConfigurationError: If the file is unreadable or a setting is invalid.
    """
    return WatchConfig.from_dict(read_config_file(path or get_config_file()))
