"""
Configuration settings management for CellVault.

This module handles loading, validating, and saving configuration settings
from YAML files. Configuration is loaded from ~/.cellvault/config.yaml by
default; callers may pass an explicit path instead.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cellvault.backup.kdf import DEFAULT_KDF_ROUNDS

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".cellvault"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class BackupConfig:
    """Backup export settings."""

    backup_dir: str = str(DEFAULT_CONFIG_DIR / "backups")
    share_dir: str = ""
    kdf_rounds: int = DEFAULT_KDF_ROUNDS


@dataclass
class RestoreConfig:
    """Default restore policy offered to the user."""

    replace_all: bool = False
    overwrite_existing: bool = False


@dataclass
class Settings:
    """
    Complete CellVault configuration settings.

    Attributes:
        data_dir: Directory holding the record database.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR).
        backup: Backup export settings.
        restore: Default restore policy.
    """

    data_dir: str = str(DEFAULT_CONFIG_DIR / "data")
    log_level: str = "INFO"

    backup: BackupConfig = field(default_factory=BackupConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def load_config(config_path: Path | None = None) -> Settings:
    """
    Load configuration from YAML file.

    Reads configuration from the specified path (or the default path if not
    provided) and validates it. A missing file yields default settings.

    Args:
        config_path: Optional path to configuration file.

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If the configuration file cannot be read or
                          contains invalid settings.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    settings = Settings()

    if config_path.exists():
        try:
            with open(config_path) as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        settings = _apply_config_data(settings, config_data)

    _validate_config(settings)

    return settings


def save_config(settings: Settings, config_path: Path | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        settings: Settings instance to save.
        config_path: Optional path to configuration file.

    Raises:
        ConfigurationError: If the configuration cannot be written.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_data = _settings_to_dict(settings)

    try:
        with open(config_path, "w") as f:
            yaml.safe_dump(config_data, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write config file: {e}") from e


def _apply_config_data(settings: Settings, data: dict[str, Any]) -> Settings:
    """Apply configuration data from parsed YAML to settings."""
    vault_data = data.get("cellvault", {}) or {}

    if "data_dir" in vault_data:
        settings.data_dir = str(vault_data["data_dir"])
    if "log_level" in vault_data:
        settings.log_level = str(vault_data["log_level"]).upper()

    backup = data.get("backup", {}) or {}
    if "backup_dir" in backup:
        settings.backup.backup_dir = str(backup["backup_dir"])
    if "share_dir" in backup:
        settings.backup.share_dir = str(backup["share_dir"] or "")
    if "kdf_rounds" in backup:
        try:
            settings.backup.kdf_rounds = int(backup["kdf_rounds"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"kdf_rounds must be an integer, got {backup['kdf_rounds']!r}"
            ) from e

    restore = data.get("restore", {}) or {}
    if "replace_all" in restore:
        settings.restore.replace_all = bool(restore["replace_all"])
    if "overwrite_existing" in restore:
        settings.restore.overwrite_existing = bool(restore["overwrite_existing"])

    return settings


def _validate_config(settings: Settings) -> None:
    """
    Validate configuration settings.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    if settings.log_level not in VALID_LOG_LEVELS:
        raise ConfigurationError(
            f"Invalid log_level: {settings.log_level}. "
            f"Must be one of: {', '.join(sorted(VALID_LOG_LEVELS))}"
        )

    if settings.backup.kdf_rounds < 1:
        raise ConfigurationError("kdf_rounds must be at least 1")

    if not settings.backup.backup_dir:
        raise ConfigurationError("backup_dir must not be empty")


def _settings_to_dict(settings: Settings) -> dict[str, Any]:
    """Convert Settings instance to dictionary for YAML serialization."""
    return {
        "cellvault": {
            "data_dir": settings.data_dir,
            "log_level": settings.log_level,
        },
        "backup": {
            "backup_dir": settings.backup.backup_dir,
            "share_dir": settings.backup.share_dir,
            "kdf_rounds": settings.backup.kdf_rounds,
        },
        "restore": {
            "replace_all": settings.restore.replace_all,
            "overwrite_existing": settings.restore.overwrite_existing,
        },
    }
