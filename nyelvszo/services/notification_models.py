"""
Data models for notification delivery.

A notification request fans out to one DeliveryTask per recipient and enabled
channel. Tasks live in memory only and are lost on restart.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

LIVE_CHANNEL = "websocket"
EMAIL_CHANNEL = "email"
SMS_CHANNEL = "sms"


class Priority(str, Enum):
    """Delivery priority; higher rank is processed first."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.URGENT: 3, Priority.HIGH: 2, Priority.NORMAL: 1, Priority.LOW: 0}


class DeliveryStatus(str, Enum):
    """Lifecycle of one delivery task."""

    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    FAILED = "failed"


class Recipient(BaseModel):
    """A notification target; at least one address must be present."""

    user_id: str | None = Field(default=None, alias="userId")
    email: str | None = None
    phone: str | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def label(self) -> str:
        """Identifier used for logging and rate limiting."""
        return self.user_id or self.email or self.phone or "unknown"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class NotificationRequest(BaseModel):
    """A request to notify one or more recipients through one template."""

    recipients: list[Recipient]
    template: str
    data: dict[str, Any] = Field(default_factory=dict)
    channels: list[str] = Field(default_factory=lambda: [LIVE_CHANNEL])
    priority: Priority = Priority.NORMAL
    delivery_guarantee: bool = Field(default=False, alias="deliveryGuarantee")
    schedule_at: float | None = Field(default=None, alias="scheduleAt")
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("recipients")
    @classmethod
    def validate_recipients(cls, v: list[Recipient]) -> list[Recipient]:
        """At least one recipient is required."""
        if not v:
            raise ValueError("Recipients are required")
        return v

    @field_validator("template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Template name is required")
        return v


@dataclass
class DeliveryResult:
    """Outcome of one channel send."""

    success: bool
    channel: str
    error: str | None = None
    message_id: str | None = None


@dataclass
class RetryPolicy:
    """
    Attempts and exponential backoff for delivery tasks.

    The delay before attempt k+1 is ``base ** k`` seconds, where k is the
    number of attempts already made.
    """

    guaranteed_max_attempts: int = 5
    backoff_base: float = 2.0

    def max_attempts(self, delivery_guarantee: bool) -> int:
        return self.guaranteed_max_attempts if delivery_guarantee else 1

    def calculate_delay(self, attempts: int) -> float:
        return self.backoff_base**attempts


@dataclass
class DeliveryTask:
    """One recipient and channel pair of a notification."""

    notification_id: str
    recipient: Recipient
    channel: str
    template: str
    data: dict[str, Any]
    priority: Priority
    max_attempts: int
    created_at: float
    context: dict[str, Any] = field(default_factory=dict)
    scheduled_at: float | None = None
    attempts: int = 0
    status: DeliveryStatus = DeliveryStatus.PENDING
    delivered_at: float | None = None
    failed_at: float | None = None
    failure_reason: str | None = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def is_due(self, now: float) -> bool:
        return self.status == DeliveryStatus.PENDING and (self.scheduled_at is None or now >= self.scheduled_at)

    @property
    def is_finished(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "notificationId": self.notification_id,
            "recipient": self.recipient.to_dict(),
            "channel": self.channel,
            "template": self.template,
            "priority": self.priority.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "scheduledAt": self.scheduled_at,
            "failureReason": self.failure_reason,
        }
