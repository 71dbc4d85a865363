"""
Structured logging package for the nyelvszo real-time layer.

All imports should use explicit paths like
'from nyelvszo.structured_logging.enhanced_logging_config import get_logger'.

The package is named 'structured_logging' rather than 'logging' so that it never
shadows the standard library module of the same name.
"""

__all__ = []
