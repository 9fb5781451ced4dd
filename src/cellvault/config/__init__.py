"""
Configuration management for CellVault.

This module handles loading, validating, and saving configuration settings.
"""

from cellvault.config.settings import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_FILE,
    BackupConfig,
    ConfigurationError,
    RestoreConfig,
    Settings,
    load_config,
    save_config,
)

__all__ = [
    "Settings",
    "BackupConfig",
    "RestoreConfig",
    "load_config",
    "save_config",
    "ConfigurationError",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONFIG_FILE",
]
