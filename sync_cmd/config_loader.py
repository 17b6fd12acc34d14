"""Settings loader for the command line sync client."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

CONFIG_ENV_VAR = "SYNC_CMD_CONFIG"
DEFAULT_SYSTEM_EXCLUDE_FILE = "/etc/sync_cmd/sync-exclude.lst"
DEFAULT_ENGINE = "sync_cmd.local_engine:LocalDiscoveryEngine"
DEFAULT_JOURNAL_NAME = ".sync_journal.db"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when config validation fails."""

    pass


class Settings:
    """Site-wide settings that sit behind the command line flags."""

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """Initialize settings from dictionary."""
        self._config = dict(config_dict or {})
        self._validate()

    def _validate(self) -> None:
        """Validate the types of the known settings."""
        for key in ("system_exclude_file", "engine", "journal_name"):
            value = self._config.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"Config key '{key}' must be a string")

        retries = self._config.get("max_sync_retries", 3)
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 0:
            raise ConfigError("Config key 'max_sync_retries' must be a non-negative integer")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {self.log_level}")

    @property
    def system_exclude_file(self) -> str:
        """Get the system-wide exclude list path."""
        return self._config.get("system_exclude_file") or DEFAULT_SYSTEM_EXCLUDE_FILE

    @property
    def max_sync_retries(self) -> int:
        """Get the default restart budget."""
        return self._config.get("max_sync_retries", 3)

    @property
    def engine(self) -> str:
        """Get the dotted path of the engine factory."""
        return self._config.get("engine") or DEFAULT_ENGINE

    @property
    def journal_name(self) -> str:
        """Get the journal file name inside the source directory."""
        return self._config.get("journal_name") or DEFAULT_JOURNAL_NAME

    @property
    def log_file_path(self) -> Optional[str]:
        """Get log file path."""
        return self._config.get("logging", {}).get("file_path")

    @property
    def log_level(self) -> str:
        """Get log level."""
        return self._config.get("logging", {}).get("level", "INFO")

    @property
    def log_max_size_mb(self) -> int:
        """Get log file size limit in MB."""
        return self._config.get("logging", {}).get("max_size_mb", 10)

    @property
    def log_backup_count(self) -> int:
        """Get number of rotated log files to keep."""
        return self._config.get("logging", {}).get("backup_count", 5)

    @property
    def log_rotation_enabled(self) -> bool:
        """Get log rotation flag."""
        return self._config.get("logging", {}).get("rotation_enabled", True)

    def to_dict(self) -> Dict[str, Any]:
        """Return settings as dictionary."""
        return self._config.copy()


def load_config(config_path: str) -> Settings:
    """Load settings from YAML file.

    Args:
        config_path: Path to the settings file

    Returns:
        Settings object

    Raises:
        ConfigError: If the file doesn't exist or is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        config_dict = yaml.safe_load(f) or {}

    if not isinstance(config_dict, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    return Settings(config_dict)


def load_config_from_env(env_var: str = CONFIG_ENV_VAR) -> Settings:
    """Load settings from the file named by an environment variable.

    Unlike the explicit loader, an unset variable is not an error: the
    command line client runs with built-in defaults.

    Args:
        env_var: Name of environment variable containing the settings path

    Returns:
        Settings object
    """
    config_path = os.getenv(env_var)
    if not config_path:
        return Settings()

    return load_config(config_path)
