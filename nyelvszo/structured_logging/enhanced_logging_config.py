"""
Enhanced structlog-based logging configuration for the nyelvszo server.

This module provides the logging system with context variables (MDC),
correlation IDs and security sanitization. It is the single entry point that
application code uses to obtain loggers.
"""

import json
import logging
import re
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.stdlib import BoundLogger, LoggerFactory

from nyelvszo.structured_logging.logging_file_setup import setup_enhanced_file_logging
from nyelvszo.structured_logging.logging_processors import (
    add_correlation_id,
    add_request_context,
    sanitize_sensitive_data,
)
from nyelvszo.structured_logging.logging_utilities import detect_environment

# Infrastructure code uses structlog directly; everything else goes through get_logger()
logger = structlog.get_logger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class _LoggingState:
    """State container for logging initialization to avoid global statements."""

    initialized: bool = False
    signature: str | None = None


_logging_state = _LoggingState()


def _strip_ansi_renderer(bound_logger: Any, name: str, event_dict: dict[str, Any]) -> str:
    """Render key/value pairs without ANSI escape sequences."""
    formatted = structlog.processors.KeyValueRenderer()(bound_logger, name, event_dict)
    return _ANSI_ESCAPE.sub("", formatted)


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    log_config: dict[str, Any] | None = None,
) -> None:
    """
    Configure structlog with MDC, sanitization and correlation IDs.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_config: Logging configuration dictionary
    """
    if environment is None:
        environment = detect_environment()

    base_processors = [
        sanitize_sensitive_data,
        add_correlation_id,
        add_request_context,
        merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # File handlers must exist before structlog starts emitting through stdlib
    if log_config and not log_config.get("disable_logging", False):
        setup_enhanced_file_logging(environment, log_config, log_level)
    else:
        logging.getLogger().setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    structlog.configure(
        processors=base_processors + [_strip_ansi_renderer],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up the logging system from the application configuration.

    Args:
        config: Configuration dictionary with a "logging" section
        force_reconfigure: When True, reconfigure even if already initialized
    """
    config_signature = json.dumps(config, sort_keys=True, default=str)

    if _logging_state.initialized and not force_reconfigure:
        get_logger("nyelvszo.structured_logging.setup").debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_logging_state.signature,
        )
        return

    logging_config = config.get("logging", {})
    environment = logging_config.get("environment", detect_environment())
    log_level = logging_config.get("level", "INFO")

    if logging_config.get("disable_logging", False):
        configure_enhanced_structlog(environment, log_level, {"disable_logging": True})
        return

    configure_enhanced_structlog(environment, log_level, logging_config)
    _configure_uvicorn_logging()

    get_logger("nyelvszo.structured_logging.enhanced").info(
        "Enhanced logging system initialized",
        environment=environment,
        log_level=log_level,
        log_base=logging_config.get("log_base", "logs"),
        security_sanitization=True,
        correlation_ids=True,
    )

    _logging_state.initialized = True
    _logging_state.signature = config_signature


def _configure_uvicorn_logging() -> None:
    """Route uvicorn's own loggers through the root handlers."""
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    This is the public API for obtaining loggers. All application code
    should use this function rather than calling structlog.get_logger()
    directly.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def bind_request_context(
    connection_id: str | None = None,
    user_id: str | None = None,
    correlation_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind connection-scoped values to every log entry emitted in this context.

    Args:
        connection_id: Live connection identifier
        user_id: Authenticated user identifier
        correlation_id: Correlation identifier for tracing
        **kwargs: Additional context values
    """
    context = {"connection_id": connection_id, "user_id": user_id, "correlation_id": correlation_id, **kwargs}
    bind_contextvars(**{key: value for key, value in context.items() if value is not None})


def clear_request_context() -> None:
    """Clear the context bound by bind_request_context."""
    clear_contextvars()
