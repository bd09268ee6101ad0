"""Fire-and-forget customer notifications.

Delivery (WhatsApp) is owned by the worker. The engine only hands events
to a sink after its transaction has committed; a failing sink never
affects a recorded spin or grant.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from spinwheel_api.settings import get_settings
from spinwheel_api.utils.metrics import notifications_enqueued

logger = logging.getLogger(__name__)

DELIVER_TASK = "spinwheel_worker.tasks.deliver_notification"

# Event names
SPIN_WON = "spin.won"
BONUS_GRANTED = "bonus.granted"
TASK_APPROVED = "task.approved"
TASK_REJECTED = "task.rejected"
REFERRAL_MILESTONE = "referral.milestone"


class NotificationSink(ABC):
    """Abstract notification sink."""

    @abstractmethod
    def notify(self, user_id: int, event: str, payload: dict) -> None:
        """Hand an event to the delivery channel."""
        pass


class LoggingNotificationSink(NotificationSink):
    """Development sink that only logs."""

    def notify(self, user_id: int, event: str, payload: dict) -> None:
        logger.info(
            f"Notification {event} for user {user_id}",
            extra={"user_id": user_id, "event": event, "payload": payload},
        )


class CeleryNotificationSink(NotificationSink):
    """Enqueue delivery on the worker (does not perform HTTP calls)."""

    def __init__(self, celery_app=None):
        """Initialize sink."""
        if celery_app is None:
            from spinwheel_api.celery_client import get_celery_app

            celery_app = get_celery_app()
        self.celery_app = celery_app

    def notify(self, user_id: int, event: str, payload: dict) -> None:
        self.celery_app.send_task(DELIVER_TASK, args=[user_id, event, payload])


def dispatch(sink: Optional[NotificationSink], user_id: int, event: str, payload: dict) -> bool:
    """Send a notification, swallowing and logging any failure."""
    if sink is None:
        return False
    try:
        sink.notify(user_id, event, payload)
    except Exception as e:
        notifications_enqueued.labels(event=event, status="failed").inc()
        logger.warning(
            f"Failed to enqueue notification {event}: {e}",
            exc_info=True,
            extra={"user_id": user_id, "event": event},
        )
        return False
    notifications_enqueued.labels(event=event, status="enqueued").inc()
    return True


def get_notification_sink() -> NotificationSink:
    """Get sink based on settings."""
    if not get_settings().notifications_enabled:
        return LoggingNotificationSink()
    return CeleryNotificationSink()
