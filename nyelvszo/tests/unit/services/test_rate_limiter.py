"""
Unit tests for the notification rate limiter.

Tests the NotificationRateLimiter class.
"""

import pytest

from nyelvszo.services.rate_limiter import NotificationRateLimiter


@pytest.fixture
def limiter(clock):
    return NotificationRateLimiter(max_per_window=3, window_seconds=60, clock=clock)


def test_allows_up_to_the_cap(limiter):
    """Test requests up to the cap pass and the next one is refused."""
    results = [limiter.check_rate_limit("user-1", "welcome") for _ in range(4)]

    assert results == [True, True, True, False]


def test_keys_are_per_recipient_and_template(limiter):
    """Test separate recipient and template pairs have separate windows."""
    for _ in range(3):
        limiter.check_rate_limit("user-1", "welcome")

    assert limiter.check_rate_limit("user-1", "admin_message") is True
    assert limiter.check_rate_limit("user-2", "welcome") is True


def test_window_resets(limiter, clock):
    """Test the count resets once the window has elapsed."""
    for _ in range(3):
        limiter.check_rate_limit("user-1", "welcome")
    clock.advance(61)

    assert limiter.check_rate_limit("user-1", "welcome") is True


def test_rate_limit_info(limiter, clock):
    """Test window usage is reported."""
    limiter.check_rate_limit("user-1", "welcome")

    info = limiter.get_rate_limit_info("user-1", "welcome")

    assert info["count"] == 1
    assert info["remaining"] == 2
    assert info["reset_time"] == clock.now + 60


def test_cleanup_expired(limiter, clock):
    """Test elapsed windows are dropped."""
    limiter.check_rate_limit("user-1", "welcome")
    clock.advance(30)
    limiter.check_rate_limit("user-2", "welcome")
    clock.advance(31)

    assert limiter.cleanup_expired() == 1
    assert list(limiter.windows) == ["user-2:welcome"]
