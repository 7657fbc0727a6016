"""Notification service for return lifecycle events.

The workflow publishes a ``ReturnEvent`` after each commit; this service fans
it out to log/webhook channels. Delivery is at-least-once, so consumers
should de-duplicate on ``event_id``.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional
import json
import logging

from returndesk.services.returns import ReturnAction, ReturnEvent

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Return lifecycle events."""
    RETURN_CREATED = "return.created"
    RETURN_APPROVED = "return.approved"
    RETURN_REJECTED = "return.rejected"
    PICKUP_SCHEDULED = "return.pickup_scheduled"
    RETURN_PROCESSING = "return.processing"
    RETURN_COMPLETED = "return.completed"
    RETURN_ARCHIVED = "return.archived"


_ACTION_EVENTS = {
    ReturnAction.CREATE: NotificationEvent.RETURN_CREATED,
    ReturnAction.APPROVE: NotificationEvent.RETURN_APPROVED,
    ReturnAction.REJECT: NotificationEvent.RETURN_REJECTED,
    ReturnAction.SCHEDULE_PICKUP: NotificationEvent.PICKUP_SCHEDULED,
    ReturnAction.START_PROCESSING: NotificationEvent.RETURN_PROCESSING,
    ReturnAction.COMPLETE: NotificationEvent.RETURN_COMPLETED,
    ReturnAction.ARCHIVE: NotificationEvent.RETURN_ARCHIVED,
}


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    WEBHOOK = "webhook"
    LOG = "log"


class DecimalEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


@dataclass
class Notification:
    """A single notification."""
    event: NotificationEvent
    title: str
    message: str
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    channel: NotificationChannel = NotificationChannel.LOG
    delivered: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "event": self.event.value,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "channel": self.channel.value,
            "delivered": self.delivered,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), cls=DecimalEncoder)


class NotificationService:
    """Manages notification dispatch across channels."""

    def __init__(self):
        self._handlers: dict[NotificationChannel, list[Callable]] = {}
        self._subscriptions: dict[NotificationEvent, list[NotificationChannel]] = {}
        self._pending: set[asyncio.Task] = set()

    def register_handler(
        self,
        channel: NotificationChannel,
        handler: Callable[[Notification], Any],
    ) -> None:
        """Register a handler for a notification channel.

        Coroutine handlers are scheduled as tasks so slow endpoints never
        hold up the caller; ``drain()`` waits for them.
        """
        if channel not in self._handlers:
            self._handlers[channel] = []
        self._handlers[channel].append(handler)

    def subscribe(
        self,
        event: NotificationEvent,
        channels: list[NotificationChannel],
    ) -> None:
        """Subscribe channels to specific events."""
        self._subscriptions[event] = channels

    def notify(
        self,
        event: NotificationEvent,
        title: str,
        message: str,
        data: Optional[dict] = None,
    ) -> list[Notification]:
        """Send notification to all subscribed channels for an event."""
        channels = self._subscriptions.get(
            event, [NotificationChannel.LOG]
        )
        results = []

        for channel in channels:
            notification = Notification(
                event=event,
                title=title,
                message=message,
                data=data or {},
                channel=channel,
            )

            handlers = self._handlers.get(channel, [])
            if not handlers:
                # Default: log handler
                self._default_log_handler(notification)
                notification.delivered = True
            else:
                for handler in handlers:
                    try:
                        result = handler(notification)
                        if inspect.isawaitable(result):
                            self._deliver_later(notification, result)
                        else:
                            notification.delivered = True
                    except Exception as e:
                        notification.error = str(e)
                        logger.error(f"Notification failed: {channel.value} - {e}")

            results.append(notification)

        return results

    def _deliver_later(self, notification: Notification, pending) -> None:
        task = asyncio.ensure_future(pending)
        self._pending.add(task)

        def done(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                notification.error = "cancelled"
            elif task.exception() is not None:
                notification.error = str(task.exception())
                logger.error(f"Notification failed: {notification.channel.value} - {task.exception()}")
            else:
                notification.delivered = True

        task.add_done_callback(done)

    async def drain(self) -> None:
        """Wait for scheduled deliveries to finish."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def publish(self, event: ReturnEvent) -> list[Notification]:
        """Fan a committed return event out to its subscribed channels."""
        kind = _ACTION_EVENTS[event.action]
        if event.from_status is None or event.from_status == event.to_status:
            message = f"Return {event.request_id}: {event.action.value} by {event.actor}"
        else:
            message = (
                f"Return {event.request_id}: {event.from_status.value} → "
                f"{event.to_status.value} by {event.actor}"
            )
        return self.notify(
            event=kind,
            title=f"Return {event.action.value.replace('_', ' ')}",
            message=message,
            data=event.to_dict(),
        )

    @staticmethod
    def _default_log_handler(notification: Notification) -> None:
        """Default log-based handler."""
        logger.info(f"[{notification.event.value}] {notification.title}: {notification.message}")


# ── Webhook handler factory ─────────────────────────────

def create_webhook_handler(url: str, timeout: int = 10, transport=None):
    """Create a webhook notification handler, delivered in the background."""
    import httpx

    async def handler(notification: Notification) -> None:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(
                url,
                content=notification.to_json(),
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()

    return handler


def build_notification_service(settings) -> NotificationService:
    svc = NotificationService()
    if settings.notification_webhook_url:
        svc.register_handler(
            NotificationChannel.WEBHOOK,
            create_webhook_handler(settings.notification_webhook_url),
        )
        for event in NotificationEvent:
            svc.subscribe(event, [NotificationChannel.WEBHOOK, NotificationChannel.LOG])
    return svc
