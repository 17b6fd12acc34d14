"""Command line file sync client."""

__version__ = "0.1.0"

from sync_cmd.config_loader import ConfigError, Settings, load_config  # noqa: E402
from sync_cmd.logging_setup import get_logger, setup_logging  # noqa: E402

__all__ = [
    "__version__",
    "Settings",
    "ConfigError",
    "load_config",
    "setup_logging",
    "get_logger",
]
