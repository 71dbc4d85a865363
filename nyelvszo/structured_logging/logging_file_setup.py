"""
File handler setup for the structured logging system.

Each subsystem writes to its own rotating log file under logs/<environment>/,
and every WARNING or higher record is additionally written to errors.log.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Any

import structlog

from nyelvszo.structured_logging.logging_utilities import ensure_log_directory, resolve_log_base

logger = structlog.get_logger(__name__)

# Log file name -> logger name prefixes routed to it
LOG_CATEGORIES: dict[str, list[str]] = {
    "server": ["nyelvszo.app", "nyelvszo.main", "nyelvszo.container", "uvicorn"],
    "realtime": ["nyelvszo.realtime"],
    "authentication": ["nyelvszo.auth"],
    "events": ["nyelvszo.events", "nyelvszo.database", "sqlalchemy", "aiosqlite", "asyncpg"],
    "notifications": ["nyelvszo.services"],
    "api": ["nyelvszo.api"],
}


def _convert_max_size_to_bytes(max_size_str: str | int) -> int:
    """Convert max_size string to bytes."""
    if isinstance(max_size_str, str):
        if max_size_str.endswith("MB"):
            return int(max_size_str[:-2]) * 1024 * 1024
        if max_size_str.endswith("KB"):
            return int(max_size_str[:-2]) * 1024
        if max_size_str.endswith("B"):
            return int(max_size_str[:-1])
        return int(max_size_str)
    return max_size_str


def _create_formatter() -> logging.Formatter:
    # structlog already renders timestamp, logger name and level into the message
    return logging.Formatter("%(message)s")


def setup_enhanced_file_logging(environment: str, log_config: dict[str, Any], log_level: str) -> None:
    """
    Set up rotating file handlers for every log category plus errors.log.

    Args:
        environment: Environment name, used as the log sub-directory
        log_config: Logging configuration dictionary (log_base, rotation)
        log_level: Root logging level
    """
    env_log_dir = resolve_log_base(log_config.get("log_base", "logs")) / environment
    if not ensure_log_directory(env_log_dir):
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    rotation_config = log_config.get("rotation", {})
    max_bytes = _convert_max_size_to_bytes(rotation_config.get("max_size", "10MB"))
    backup_count = rotation_config.get("backup_count", 5)
    formatter = _create_formatter()

    for category, prefixes in LOG_CATEGORIES.items():
        handler = RotatingFileHandler(
            env_log_dir / f"{category}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        for prefix in prefixes:
            logging.getLogger(prefix).addHandler(handler)

    errors_handler = RotatingFileHandler(
        env_log_dir / "errors.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    errors_handler.setFormatter(formatter)
    errors_handler.setLevel(logging.WARNING)
    root_logger.addHandler(errors_handler)

    if log_config.get("console", environment == "local"):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
        root_logger.addHandler(console_handler)

    logger.debug("File logging handlers configured", log_dir=str(env_log_dir), categories=list(LOG_CATEGORIES))
