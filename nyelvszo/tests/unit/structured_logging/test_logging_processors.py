"""
Unit tests for structured logging processors and request context helpers.
"""

import pytest
from structlog.contextvars import get_contextvars

from nyelvszo.structured_logging.enhanced_logging_config import bind_request_context, clear_request_context
from nyelvszo.structured_logging.logging_processors import (
    add_correlation_id,
    add_request_context,
    sanitize_sensitive_data,
)


@pytest.fixture(autouse=True)
def _clean_context():
    clear_request_context()
    yield
    clear_request_context()


def test_sanitize_redacts_tokens_and_secrets():
    """Test credential fields are redacted, nested ones included."""
    event = {
        "event": "auth frame received",
        "token": "eyJhbGciOi",
        "jwt_secret": "hunter2",
        "payload": {"password": "pw", "userId": "user-1"},
    }

    result = sanitize_sensitive_data(None, "info", event)

    assert result["token"] == "[REDACTED]"
    assert result["jwt_secret"] == "[REDACTED]"
    assert result["payload"]["password"] == "[REDACTED]"
    assert result["payload"]["userId"] == "user-1"
    assert result["event"] == "auth frame received"


def test_sanitize_keeps_safe_identifier_fields():
    """Test key-like identifier fields pass through."""
    result = sanitize_sensitive_data(None, "info", {"room_key": "entry-1", "api_key": "abc"})

    assert result["room_key"] == "entry-1"
    assert result["api_key"] == "[REDACTED]"


def test_correlation_id_added_once():
    """Test a correlation id is only generated when absent."""
    generated = add_correlation_id(None, "info", {})
    kept = add_correlation_id(None, "info", {"correlation_id": "abc"})

    assert generated["correlation_id"]
    assert kept["correlation_id"] == "abc"


def test_request_context_adds_timestamp_and_name():
    result = add_request_context(None, "nyelvszo.realtime.hub", {"timestamp": "t0"})

    assert result["timestamp"] == "t0"
    assert result["logger_name"] == "nyelvszo.realtime.hub"


def test_bind_request_context_skips_missing_values():
    """Test only provided values are bound and clearing removes them."""
    bind_request_context(connection_id="conn-1", user_id=None, channel="entries:1")

    context = get_contextvars()
    assert context == {"connection_id": "conn-1", "channel": "entries:1"}

    clear_request_context()
    assert get_contextvars() == {}
