"""
Delivery channels for notifications.

Every channel exposes ``send(recipient, rendered, context) -> DeliveryResult``.
The live channel writes to connected sessions through the connection
registry; email and SMS are outbound adapters that hand the rendered message
to an external provider (here they only log it).
"""

import uuid
from typing import Any, Protocol

from ..realtime.connection_registry import ConnectionRegistry
from ..realtime.envelope import build_frame, utc_now_z
from ..structured_logging.enhanced_logging_config import get_logger
from .notification_models import EMAIL_CHANNEL, LIVE_CHANNEL, SMS_CHANNEL, DeliveryResult, Recipient

logger = get_logger(__name__)


class NotificationChannel(Protocol):
    """Capability shared by every delivery channel."""

    name: str

    async def send(self, recipient: Recipient, rendered: dict[str, Any], context: dict[str, Any]) -> DeliveryResult: ...


class LiveConnectionChannel:
    """Pushes a `notification` frame to every live session of the recipient."""

    name = LIVE_CHANNEL

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def send(self, recipient: Recipient, rendered: dict[str, Any], context: dict[str, Any]) -> DeliveryResult:
        body = rendered.get(self.name)
        if not body:
            return DeliveryResult(success=False, channel=self.name, error="No websocket template")
        if not recipient.user_id:
            return DeliveryResult(success=False, channel=self.name, error="Recipient has no user id")
        if not self.registry.sessions_for_user(recipient.user_id):
            return DeliveryResult(success=False, channel=self.name, error="User not connected")

        payload = {
            **body,
            "id": context.get("notificationId"),
            "template": context.get("template"),
            "priority": context.get("priority"),
            "timestamp": utc_now_z(),
        }
        # the retry policy owns redelivery, so failed writes are not parked in the backlog
        sent = await self.registry.send_to_user(recipient.user_id, build_frame("notification", payload), queue=False)
        logger.debug("Live notification sent", user_id=recipient.user_id, sessions_written=sent)
        if sent == 0:
            return DeliveryResult(success=False, channel=self.name, error="No session accepted the notification")
        return DeliveryResult(success=True, channel=self.name)


class EmailChannel:
    """Outbound email adapter."""

    name = EMAIL_CHANNEL

    async def send(self, recipient: Recipient, rendered: dict[str, Any], context: dict[str, Any]) -> DeliveryResult:
        body = rendered.get(self.name)
        if not body:
            return DeliveryResult(success=False, channel=self.name, error="No email template")
        if not recipient.email:
            return DeliveryResult(success=False, channel=self.name, error="Recipient has no email address")

        message_id = f"email-{uuid.uuid4().hex}"
        logger.info(
            "Email notification dispatched",
            to=recipient.email,
            subject=body.get("subject"),
            template=body.get("template"),
            message_id=message_id,
        )
        return DeliveryResult(success=True, channel=self.name, message_id=message_id)


class SMSChannel:
    """Outbound SMS adapter."""

    name = SMS_CHANNEL

    async def send(self, recipient: Recipient, rendered: dict[str, Any], context: dict[str, Any]) -> DeliveryResult:
        body = rendered.get(self.name)
        if not body:
            return DeliveryResult(success=False, channel=self.name, error="No SMS template")
        if not recipient.phone:
            return DeliveryResult(success=False, channel=self.name, error="Recipient has no phone number")

        message_id = f"sms-{uuid.uuid4().hex}"
        logger.info("SMS notification dispatched", to=recipient.phone, message_id=message_id)
        return DeliveryResult(success=True, channel=self.name, message_id=message_id)
