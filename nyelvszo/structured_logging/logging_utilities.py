"""
Helpers shared by the logging setup: log directory handling and environment detection.
"""

import os
import sys
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

VALID_ENVIRONMENTS = ("unit_test", "local", "production")

# Files that mark the repository root when resolving a relative log_base
_ROOT_MARKERS = ("pyproject.toml", ".env")


def ensure_log_directory(directory: Path) -> bool:
    """
    Create a log directory if it does not exist yet.

    Returns:
        bool: False when the directory could not be created; file handlers are then skipped
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(
            "Failed to create log directory",
            directory=str(directory),
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
    return True


def resolve_log_base(log_base: str) -> Path:
    """
    Resolve a log_base setting to an absolute directory.

    Relative paths are anchored at the nearest ancestor of the working
    directory that holds pyproject.toml or .env, so `logs/` ends up next to
    the service configuration no matter where uvicorn was started from.
    """
    log_path = Path(log_base)
    if log_path.is_absolute():
        return log_path

    cwd = Path.cwd()
    root = next(
        (candidate for candidate in (cwd, *cwd.parents) if any((candidate / marker).exists() for marker in _ROOT_MARKERS)),
        cwd,
    )
    return root / log_path


def detect_environment() -> str:
    """Environment name from LOGGING_ENVIRONMENT, falling back to unit_test under pytest and local otherwise."""
    configured = os.getenv("LOGGING_ENVIRONMENT", "")
    if configured in VALID_ENVIRONMENTS:
        return configured
    if "pytest" in sys.modules:
        return "unit_test"
    return "local"
