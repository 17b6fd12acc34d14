"""Logging setup for the command line sync client."""

import getpass
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOGGER_NAME = "sync_cmd"


def setup_logging(
    log_file: Optional[str] = None,
    log_level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    rotation_enabled: bool = True,
) -> logging.Logger:
    """Set up logging with a console handler and an optional file handler.

    Args:
        log_file: Path to log file, or None to log to the console only
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        max_bytes: Max size of log file before rotation (in bytes)
        backup_count: Number of backup files to keep
        rotation_enabled: Whether to enable log rotation

    Returns:
        Configured logger instance
    """
    level = getattr(logging, log_level.upper())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    try:
        username = getpass.getuser()
    except Exception:
        username = "unknown"

    formatter = logging.Formatter(
        f"%(asctime)s - %(name)s - %(levelname)s - [{username}] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        if rotation_enabled:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
        else:
            file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the configured sync_cmd logger."""
    return logging.getLogger(LOGGER_NAME)
