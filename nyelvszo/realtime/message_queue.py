"""
Bounded per-connection backlog of frames that could not be written.

Frames are kept in memory only; the backlog is best-effort and does not
survive a process restart.
"""

import time
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class MessageQueue:
    """
    Message queue holding frames for connections that are not writable.

    Each key keeps at most ``max_messages_per_key`` frames; the oldest frames
    are dropped once the bound is reached.
    """

    def __init__(self, max_messages_per_key: int = 100) -> None:
        """
        Initialize the message queue.

        Args:
            max_messages_per_key: Maximum number of pending frames per key
        """
        self.pending_messages: dict[str, list[dict[str, Any]]] = {}
        self.max_messages_per_key = max_messages_per_key

    def add_message(self, key: str, frame: dict[str, Any], queued_at: float | None = None) -> None:
        """
        Add a frame to a key's pending queue.

        Args:
            key: Connection id or carried-over user key
            frame: The frame to queue
            queued_at: Queue timestamp (defaults to now)
        """
        queue = self.pending_messages.setdefault(key, [])
        queue.append({"frame": frame, "queued_at": queued_at if queued_at is not None else time.time()})

        if len(queue) > self.max_messages_per_key:
            dropped = len(queue) - self.max_messages_per_key
            self.pending_messages[key] = queue[-self.max_messages_per_key :]
            logger.warning("Backlog limit reached, dropping oldest frames", key=key, dropped=dropped)

    def extend(self, key: str, entries: list[dict[str, Any]]) -> None:
        """Append already-wrapped entries, keeping their original queue time."""
        for entry in entries:
            self.add_message(key, entry["frame"], entry["queued_at"])

    def get_messages(self, key: str) -> list[dict[str, Any]]:
        """
        Get all pending entries for a key and clear its queue.

        Returns:
            list: Entries of the form {"frame": ..., "queued_at": ...}, oldest first
        """
        return self.pending_messages.pop(key, [])

    def has_messages(self, key: str) -> bool:
        return bool(self.pending_messages.get(key))

    def get_message_count(self, key: str) -> int:
        return len(self.pending_messages.get(key, []))

    def total_messages(self) -> int:
        return sum(len(queue) for queue in self.pending_messages.values())

    def cleanup_old_messages(self, max_age_seconds: float = 3600, now: float | None = None) -> int:
        """
        Drop frames older than the given age.

        Returns:
            int: Number of frames removed
        """
        cutoff = (now if now is not None else time.time()) - max_age_seconds
        removed = 0
        for key in list(self.pending_messages):
            kept = [entry for entry in self.pending_messages[key] if entry["queued_at"] > cutoff]
            removed += len(self.pending_messages[key]) - len(kept)
            if kept:
                self.pending_messages[key] = kept
            else:
                del self.pending_messages[key]
        if removed:
            logger.info("Cleaned up stale backlog frames", removed=removed)
        return removed

    def get_stats(self) -> dict[str, Any]:
        return {
            "keys_with_messages": len(self.pending_messages),
            "total_messages": self.total_messages(),
            "max_messages_per_key": self.max_messages_per_key,
        }
