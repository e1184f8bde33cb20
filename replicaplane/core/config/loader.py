"""
Configuration loader — reads replicaplane.yml into a ControllerConfig.

The file is optional: without one every setting takes its default.
Environment variables override the file for logging only (see
``logging_config``).
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from replicaplane.core.errors import ReplicaplaneError

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "replicaplane.yml"


class ConfigError(ReplicaplaneError):
    """Raised when configuration is invalid or unreadable."""


class ControllerConfig(BaseModel):
    """Runtime knobs for the controller."""

    workers: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.005, gt=0)      # first retry backoff (s)
    max_delay: float = Field(default=300.0, gt=0)       # backoff ceiling (s)
    finalize_requeue_seconds: float = Field(default=5.0, ge=0)
    sync_timeout_seconds: float | None = Field(default=30.0, gt=0)
    log_level: str = "WARNING"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for replicaplane.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to the config file, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_yaml_mapping(path: Path) -> dict:
    """Read a YAML file that must contain a mapping.

    Raises:
        ConfigError: If the file is missing, unreadable, or not a mapping.
    """
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def load_config(path: Path | None = None, search: bool = True) -> ControllerConfig:
    """Load and validate controller configuration.

    Args:
        path: Explicit path to replicaplane.yml. If None, searches upward
            (unless ``search`` is False) and falls back to defaults.

    Returns:
        Validated ControllerConfig.

    Raises:
        ConfigError: If the file is invalid.
    """
    if path is None and search:
        path = find_config_file()

    if path is None:
        logger.debug("No %s found, using defaults", CONFIG_FILE)
        return ControllerConfig()

    logger.debug("Loading controller config from %s", path)
    data = load_yaml_mapping(path)

    # The YAML may wrap everything under a "controller" key or be flat
    section = data.get("controller", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'controller' in {path} must be a mapping")

    try:
        config = ControllerConfig.model_validate(section)
    except ValidationError as e:
        raise ConfigError(f"Invalid controller configuration: {e}") from e

    logger.info("Loaded controller config from %s (workers=%d)", path, config.workers)
    return config
