"""
Config check use case — validate replicaplane.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from replicaplane.core.config.loader import (
    CONFIG_FILE,
    ConfigError,
    ControllerConfig,
    find_config_file,
    load_config,
)


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: ControllerConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "config": self.config.model_dump() if self.config else None,
        }


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Validate controller configuration and report issues.

    A missing file is valid (defaults apply) but produces a warning.
    """
    result = ConfigCheckResult()

    if config_path is None:
        config_path = find_config_file()
    if config_path is None:
        result.warnings.append(f"No {CONFIG_FILE} found; using defaults.")
        result.config = ControllerConfig()
        result.valid = True
        return result

    result.config_path = config_path
    try:
        config = load_config(config_path, search=False)
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    result.config = config

    # Semantic checks
    if config.base_delay > config.max_delay:
        result.errors.append(
            f"base_delay ({config.base_delay}) exceeds max_delay ({config.max_delay})"
        )
    if config.sync_timeout_seconds is None:
        result.warnings.append("sync_timeout_seconds is unset; passes never time out.")
    if config.finalize_requeue_seconds == 0:
        result.warnings.append(
            "finalize_requeue_seconds is 0; deleting ReplicaSets are re-polled immediately."
        )

    result.valid = not result.errors
    return result
