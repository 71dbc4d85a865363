"""
Services package for the nyelvszo real-time server.

Notification delivery (templates, channels, rate limiting, retries) and the
search collaborator interface.
"""

from .notification_models import DeliveryStatus, DeliveryTask, NotificationRequest, Priority, Recipient
from .notification_service import NotificationService
from .search import NullSearchProvider, SearchProvider

__all__ = [
    "DeliveryStatus",
    "DeliveryTask",
    "NotificationRequest",
    "NotificationService",
    "NullSearchProvider",
    "Priority",
    "Recipient",
    "SearchProvider",
]
