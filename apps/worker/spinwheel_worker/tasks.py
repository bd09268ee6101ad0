"""Celery tasks for notification delivery."""

import logging
from typing import Optional

from celery import Task
from sqlalchemy.orm import Session

from spinwheel_worker.celery_app import celery_app
from spinwheel_worker.db import get_db
from spinwheel_worker.delivery import DeliveryError, render_message, send_message
from spinwheel_worker.settings import get_settings

logger = logging.getLogger(__name__)


class DatabaseTask(Task):
    """Task with database session."""

    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        """Get database session."""
        if self._db is None:
            self._db = next(get_db())
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task."""
        if self._db:
            self._db.close()
            self._db = None


@celery_app.task(
    base=DatabaseTask,
    bind=True,
    max_retries=get_settings().notification_max_retries,
    autoretry_for=(DeliveryError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def deliver_notification(self, user_id: int, event: str, payload: dict):
    """Deliver one customer notification with automatic retries."""
    from spinwheel_api.models import EndUser

    log_extra = {
        "task": "deliver_notification",
        "user_id": user_id,
        "event": event,
        "attempt": self.request.retries + 1,
    }

    user = self.db.get(EndUser, user_id)
    if user is None:
        logger.error(f"User {user_id} not found", extra=log_extra)
        return

    text = render_message(event, payload)
    if text is None:
        logger.warning(f"No message template for {event}", extra=log_extra)
        return

    try:
        send_message(user.phone, event, text)
    except DeliveryError as e:
        logger.error(f"Notification delivery failed: {e}", extra=log_extra)
        raise
    logger.info("Notification delivered", extra=log_extra)
