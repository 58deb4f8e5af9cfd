"""Locate and load YAML configuration files under config/."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent.parent


class ConfigError(Exception):
    """Raised when a configuration file exists but cannot be used."""
    pass


def find_config_path(filename: str) -> Optional[Path]:
    """
    Find a file under config/, preferring the working directory over the repo root.

    Args:
        filename: Path relative to config/ (e.g. "subjects.yaml")

    Returns:
        Path to the file, or None if it exists in neither location
    """
    candidates = [
        Path("config") / filename,
        REPO_ROOT / "config" / filename,
    ]
    for path in candidates:
        if path.exists():
            return path
    return None


def load_yaml_config(filename: str, required: bool = False) -> Dict[str, Any]:
    """
    Load a YAML mapping from config/.

    Args:
        filename: Path relative to config/
        required: Raise ConfigError when the file is missing

    Returns:
        Parsed mapping, or empty dict if the file is missing and not required

    Raises:
        ConfigError: If the file is unreadable, not a mapping, or required but missing
    """
    path = find_config_path(filename)
    if path is None:
        if required:
            raise ConfigError(f"config/{filename} not found (cwd={os.getcwd()})")
        logger.debug(f"config/{filename} not found, using defaults")
        return {}

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at top level")
    return data
