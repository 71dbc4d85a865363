"""
Notification delivery service.

A request is expanded into one delivery task per recipient and enabled
channel. A periodic processor drains due tasks in priority order, renders the
template, and hands the message to the channel. Failed tasks are retried with
exponential backoff until their attempts run out. Lifecycle events are
recorded on the event log under ``notifications-{id}``.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..config.models import NotificationConfig
from ..events.event_store import EventStore
from ..events.event_types import EXPECTED_VERSION_ANY, NewEvent, PersistedEvent
from ..exceptions import NyelvSzoError, ValidationError
from ..realtime.connection_registry import ConnectionRegistry
from ..realtime.envelope import utc_now_z
from ..structured_logging.enhanced_logging_config import get_logger
from .notification_channels import EmailChannel, LiveConnectionChannel, NotificationChannel, SMSChannel
from .notification_models import (
    EMAIL_CHANNEL,
    LIVE_CHANNEL,
    SMS_CHANNEL,
    DeliveryStatus,
    DeliveryTask,
    NotificationRequest,
    Priority,
    Recipient,
    RetryPolicy,
)
from .notification_templates import TemplateRegistry
from .rate_limiter import NotificationRateLimiter

logger = get_logger(__name__)

NOTIFICATION_AGGREGATE_TYPE = "Notification"
NOTIFICATION_QUEUED = "NotificationQueued"
NOTIFICATION_DELIVERED = "NotificationDelivered"
NOTIFICATION_FAILED = "NotificationFailed"

FailureObserver = Callable[[DeliveryTask], Awaitable[None]]


def notification_stream_id(notification_id: str) -> str:
    return f"notifications-{notification_id}"


class NotificationService:
    """
    Multi-channel notification delivery with retries and rate limiting.

    Tasks are kept in memory for inspection and statistics and are not
    persisted; a restart drops everything still pending.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        event_store: EventStore | None = None,
        config: NotificationConfig | None = None,
        channels: dict[str, NotificationChannel] | None = None,
        templates: TemplateRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the notification service.

        Args:
            registry: Connection registry used by the live channel
            event_store: Event log for lifecycle events (optional)
            config: Processor, retry and rate limit settings
            channels: Channel adapters by name; defaults to websocket, email and sms
            templates: Template registry; defaults to the built-in templates
            clock: Time source in seconds
        """
        self.config = config or NotificationConfig()
        self.registry = registry
        self.event_store = event_store
        self.clock = clock
        self.templates = templates or TemplateRegistry()
        self.channels: dict[str, NotificationChannel] = channels or {
            LIVE_CHANNEL: LiveConnectionChannel(registry),
            EMAIL_CHANNEL: EmailChannel(),
            SMS_CHANNEL: SMSChannel(),
        }
        self.retry_policy = RetryPolicy(
            guaranteed_max_attempts=self.config.guaranteed_max_attempts,
            backoff_base=self.config.backoff_base,
        )
        self.rate_limiter = NotificationRateLimiter(
            max_per_window=self.config.rate_limit_max,
            window_seconds=self.config.rate_limit_window,
            clock=clock,
        )
        self.tasks: dict[str, list[DeliveryTask]] = {}
        self.user_preferences: dict[str, list[str]] = {}
        self._failure_observers: list[FailureObserver] = []
        self._unsubscribe_domain_events: Callable[[], None] | None = None
        self._processor_task: asyncio.Task | None = None

    # Requests

    async def send_notification(self, request: NotificationRequest | dict[str, Any]) -> str | None:
        """
        Queue a notification for delivery.

        Args:
            request: The notification request, as a model or a camelCase dict

        Returns:
            str | None: The notification id, or None when no task was created

        Raises:
            ValidationError: If the request is malformed
        """
        if isinstance(request, dict):
            try:
                request = NotificationRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid notification request: {e}", field="notification") from e

        notification_id = str(uuid.uuid4())
        now = self.clock()
        max_attempts = self.retry_policy.max_attempts(request.delivery_guarantee)
        created: list[DeliveryTask] = []

        for recipient in request.recipients:
            preferred = self.get_user_preferences(recipient.user_id)
            enabled = [channel for channel in request.channels if channel in preferred]
            if not enabled:
                logger.debug("All channels disabled for recipient", recipient=recipient.label, template=request.template)
                continue

            # only requests that would be delivered count against the window
            if not self.rate_limiter.check_rate_limit(recipient.label, request.template):
                logger.warning("Notification rate limited", recipient=recipient.label, template=request.template)
                continue

            data = {**request.data, "recipient": recipient.to_dict(), "timestamp": utc_now_z()}
            for channel in enabled:
                created.append(
                    DeliveryTask(
                        notification_id=notification_id,
                        recipient=recipient,
                        channel=channel,
                        template=request.template,
                        data=data,
                        priority=request.priority,
                        max_attempts=max_attempts,
                        created_at=now,
                        context=dict(request.context),
                        scheduled_at=request.schedule_at,
                    )
                )

        if not created:
            return None

        self.tasks[notification_id] = created
        logger.info(
            "Notification queued for delivery",
            notification_id=notification_id,
            recipients=len(request.recipients),
            channels=request.channels,
            template=request.template,
            tasks=len(created),
        )
        await self._record_event(
            NOTIFICATION_QUEUED,
            notification_id,
            {
                "recipients": [recipient.label for recipient in request.recipients],
                "template": request.template,
                "channels": request.channels,
                "priority": request.priority.value,
                "context": request.context,
            },
        )
        return notification_id

    # Preferences

    def get_user_preferences(self, user_id: str | None) -> list[str]:
        """Channels a recipient accepts; anonymous recipients only get the live channel."""
        if not user_id:
            return [LIVE_CHANNEL]
        return list(self.user_preferences.get(user_id, [LIVE_CHANNEL, EMAIL_CHANNEL]))

    def set_user_preferences(self, user_id: str, channels: list[str]) -> None:
        unknown = [channel for channel in channels if channel not in self.channels]
        if unknown:
            raise ValidationError(f"Unknown notification channels: {', '.join(unknown)}", field="channels")
        self.user_preferences[user_id] = list(dict.fromkeys(channels))

    # Processing

    def due_tasks(self, now: float | None = None) -> list[DeliveryTask]:
        """Pending tasks whose scheduled time has arrived, highest priority first."""
        current = self.clock() if now is None else now
        due = [task for tasks in self.tasks.values() for task in tasks if task.is_due(current)]
        # sort is stable, so equal priorities keep their queue order
        due.sort(key=lambda task: task.priority.rank, reverse=True)
        return due

    async def process_due_tasks(self, now: float | None = None) -> int:
        """
        Process one batch of due tasks.

        Returns:
            int: Number of tasks processed
        """
        due = self.due_tasks(now)
        batch = due[: self.config.batch_size]
        for task in batch:
            await self.process_task(task)
        if batch:
            logger.debug("Processed delivery batch", processed=len(batch), remaining=len(due) - len(batch))
        return len(batch)

    async def process_task(self, task: DeliveryTask) -> None:
        """Attempt one delivery and apply the retry policy on failure."""
        task.status = DeliveryStatus.PROCESSING
        task.attempts += 1
        logger.debug(
            "Processing delivery task",
            notification_id=task.notification_id,
            recipient=task.recipient.label,
            channel=task.channel,
            attempt=task.attempts,
        )

        try:
            channel = self.channels.get(task.channel)
            if channel is None:
                raise ValidationError(f"Unknown channel: {task.channel}", field="channel")
            rendered = self.templates.render(task.template, task.data)
            context = {
                **task.context,
                "notificationId": task.notification_id,
                "template": task.template,
                "priority": task.priority.value,
            }
            result = await channel.send(task.recipient, rendered, context)
            error = None if result.success else (result.error or "Delivery failed")
        except NyelvSzoError as e:
            error = e.message
        except Exception as e:  # pylint: disable=broad-except  # Reason: channel adapters are external, every failure goes through the retry policy
            logger.error(
                "Unexpected error in notification channel",
                notification_id=task.notification_id,
                channel=task.channel,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            error = str(e)

        if error is None:
            await self._mark_delivered(task)
        else:
            await self._handle_failure(task, error)

    async def _mark_delivered(self, task: DeliveryTask) -> None:
        task.status = DeliveryStatus.DELIVERED
        task.delivered_at = self.clock()
        logger.info(
            "Notification delivered",
            notification_id=task.notification_id,
            recipient=task.recipient.label,
            channel=task.channel,
            attempts=task.attempts,
        )
        await self._record_event(
            NOTIFICATION_DELIVERED,
            task.notification_id,
            {
                "recipient": task.recipient.label,
                "channel": task.channel,
                "attempts": task.attempts,
                "deliveryTime": round(task.delivered_at - task.created_at, 3),
            },
        )

    async def _handle_failure(self, task: DeliveryTask, error: str) -> None:
        logger.warning(
            "Delivery task failed",
            notification_id=task.notification_id,
            recipient=task.recipient.label,
            channel=task.channel,
            attempt=task.attempts,
            max_attempts=task.max_attempts,
            error=error,
        )
        if task.attempts < task.max_attempts:
            task.status = DeliveryStatus.PENDING
            task.scheduled_at = self.clock() + self.retry_policy.calculate_delay(task.attempts)
            logger.debug(
                "Scheduling retry",
                notification_id=task.notification_id,
                next_attempt=task.scheduled_at,
                attempts_left=task.max_attempts - task.attempts,
            )
            return

        task.status = DeliveryStatus.FAILED
        task.failed_at = self.clock()
        task.failure_reason = error
        logger.error(
            "Notification delivery failed permanently",
            notification_id=task.notification_id,
            recipient=task.recipient.label,
            channel=task.channel,
            error=error,
        )
        await self._record_event(
            NOTIFICATION_FAILED,
            task.notification_id,
            {
                "recipient": task.recipient.label,
                "channel": task.channel,
                "attempts": task.attempts,
                "error": error,
            },
        )
        for observer in list(self._failure_observers):
            try:
                await observer(task)
            except Exception as e:  # pylint: disable=broad-except  # Reason: observers must not break the processor
                logger.error("Notification failure observer failed", error=str(e), error_type=type(e).__name__)

    def on_failed(self, observer: FailureObserver) -> Callable[[], None]:
        """Register a coroutine called with every task that fails permanently."""
        self._failure_observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._failure_observers:
                self._failure_observers.remove(observer)

        return unsubscribe

    async def _record_event(self, event_type: str, notification_id: str, data: dict[str, Any]) -> None:
        if self.event_store is None:
            return
        try:
            await self.event_store.append(
                notification_stream_id(notification_id),
                [
                    NewEvent(
                        event_type=event_type,
                        aggregate_id=notification_id,
                        aggregate_type=NOTIFICATION_AGGREGATE_TYPE,
                        payload={**data, "notificationId": notification_id, "timestamp": utc_now_z()},
                    )
                ],
                expected_version=EXPECTED_VERSION_ANY,
                metadata={"source": "notification_service"},
            )
        except NyelvSzoError as e:
            logger.error(
                "Failed to record notification event",
                event_type=event_type,
                notification_id=notification_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    # Domain events

    def attach(self, event_store: EventStore) -> None:
        """Record lifecycle events on the store and react to domain events appended to it."""
        self.event_store = event_store
        if self._unsubscribe_domain_events is None:
            self._unsubscribe_domain_events = event_store.on_appended(self.handle_domain_event)

    def detach(self) -> None:
        if self._unsubscribe_domain_events is not None:
            self._unsubscribe_domain_events()
            self._unsubscribe_domain_events = None

    async def handle_domain_event(self, event: PersistedEvent) -> str | None:
        """
        Turn a domain event into a notification where one applies.

        Returns:
            str | None: The id of the queued notification, if any
        """
        data = event.payload
        if event.aggregate_type == "Entry" and event.event_type in ("EntryApproved", "EntryRejected"):
            entry = data.get("entry") or {}
            author_id = entry.get("authorId")
            if not author_id:
                logger.debug("Entry event without author, no notification", event_type=event.event_type)
                return None
            approved = event.event_type == "EntryApproved"
            return await self.send_notification(
                NotificationRequest(
                    recipients=[Recipient(user_id=str(author_id))],
                    template="entry_approved" if approved else "entry_rejected",
                    data={"entry": entry, "approver": data.get("approver"), "reason": data.get("reason")},
                    channels=[LIVE_CHANNEL, EMAIL_CHANNEL],
                    priority=Priority.HIGH,
                    context={"event": "entry_approved" if approved else "entry_rejected"},
                )
            )

        if event.aggregate_type == "User" and event.event_type == "UserRegistered":
            user = data.get("user") or {}
            user_id = user.get("id") or user.get("userId") or event.aggregate_id
            return await self.send_notification(
                NotificationRequest(
                    recipients=[Recipient(user_id=str(user_id), email=user.get("email"))],
                    template="welcome",
                    data={"user": user},
                    channels=[LIVE_CHANNEL, EMAIL_CHANNEL],
                    priority=Priority.HIGH,
                    context={"event": "user_welcome"},
                )
            )
        return None

    # Housekeeping

    def cleanup_finished(self, now: float | None = None) -> int:
        """Drop notifications whose tasks all finished longer ago than the retention window."""
        current = self.clock() if now is None else now
        expired = []
        for notification_id, tasks in self.tasks.items():
            if not all(task.is_finished for task in tasks):
                continue
            finished_at = max((task.delivered_at or task.failed_at or 0.0) for task in tasks)
            if current - finished_at >= self.config.task_retention:
                expired.append(notification_id)
        for notification_id in expired:
            del self.tasks[notification_id]
        if expired:
            logger.debug("Pruned finished notifications", count=len(expired))
        self.rate_limiter.cleanup_expired()
        return len(expired)

    def get_stats(self) -> dict[str, int]:
        all_tasks = [task for tasks in self.tasks.values() for task in tasks]
        counts = {status: 0 for status in DeliveryStatus}
        for task in all_tasks:
            counts[task.status] += 1
        return {
            "queuedTasks": counts[DeliveryStatus.PENDING],
            "processingTasks": counts[DeliveryStatus.PROCESSING],
            "deliveredTasks": counts[DeliveryStatus.DELIVERED],
            "failedTasks": counts[DeliveryStatus.FAILED],
            "totalTasks": len(all_tasks),
            "templates": len(self.templates),
            "channels": len(self.channels),
        }

    def get_tasks(self, notification_id: str) -> list[DeliveryTask]:
        return list(self.tasks.get(notification_id, ()))

    # Lifecycle

    async def _processor_loop(self) -> None:
        logger.info("Notification processor started", interval_seconds=self.config.processor_interval)
        try:
            while True:
                await asyncio.sleep(self.config.processor_interval)
                try:
                    await self.process_due_tasks()
                    self.cleanup_finished()
                except Exception as e:  # pylint: disable=broad-except  # Reason: a failing tick must not stop the processor
                    logger.error(
                        "Error in delivery processor", error=str(e), error_type=type(e).__name__, exc_info=True
                    )
        except asyncio.CancelledError:
            logger.info("Notification processor cancelled")
            raise

    def start(self) -> None:
        """Start the periodic processor; must be called from a running event loop."""
        if self.is_running:
            logger.warning("Notification processor already running")
            return
        self._processor_task = asyncio.create_task(self._processor_loop(), name="notifications/processor")
        logger.info(
            "Notification service started",
            channels=list(self.channels),
            templates=len(self.templates),
        )

    async def stop(self) -> None:
        if self._processor_task is None:
            return
        self._processor_task.cancel()
        try:
            await self._processor_task
        except asyncio.CancelledError:
            pass
        self._processor_task = None
        logger.info("Notification service stopped")

    @property
    def is_running(self) -> bool:
        return self._processor_task is not None and not self._processor_task.done()
