"""
Fixed-window rate limiting for notifications.

Each (recipient, template) pair may receive a bounded number of notifications
per window. Requests beyond the cap are dropped, not queued.
"""

import time
from collections.abc import Callable
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class NotificationRateLimiter:
    """
    Fixed-window counter per (recipient, template).

    The window opens on the first request for a key and resets once it has
    elapsed.
    """

    def __init__(self, max_per_window: int = 10, window_seconds: float = 3600.0, clock: Callable[[], float] = time.time):
        """
        Initialize the rate limiter.

        Args:
            max_per_window: Notifications allowed per key per window (default: 10)
            window_seconds: Window length in seconds (default: 1 hour)
            clock: Time source in seconds
        """
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self.clock = clock
        self.windows: dict[str, tuple[float, int]] = {}

    @staticmethod
    def _key(recipient: str, template: str) -> str:
        return f"{recipient}:{template}"

    def check_rate_limit(self, recipient: str, template: str) -> bool:
        """
        Count one request against the window.

        Returns:
            bool: True if the request is allowed, False if the cap is reached
        """
        key = self._key(recipient, template)
        now = self.clock()
        window_start, count = self.windows.get(key, (now, 0))
        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        if count >= self.max_per_window:
            logger.warning("Notification rate limit exceeded", recipient=recipient, template=template)
            self.windows[key] = (window_start, count)
            return False

        self.windows[key] = (window_start, count + 1)
        return True

    def get_rate_limit_info(self, recipient: str, template: str) -> dict[str, Any]:
        """Current window usage for a key."""
        now = self.clock()
        window_start, count = self.windows.get(self._key(recipient, template), (now, 0))
        if now - window_start >= self.window_seconds:
            count = 0
        return {
            "count": count,
            "max": self.max_per_window,
            "window_seconds": self.window_seconds,
            "remaining": max(0, self.max_per_window - count),
            "reset_time": window_start + self.window_seconds if count else 0,
        }

    def cleanup_expired(self) -> int:
        """Drop windows that have elapsed; returns how many were removed."""
        now = self.clock()
        expired = [key for key, (start, _) in self.windows.items() if now - start >= self.window_seconds]
        for key in expired:
            del self.windows[key]
        if expired:
            logger.debug("Cleaned up notification rate limit windows", removed=len(expired))
        return len(expired)
