"""Celery application configuration."""

from celery import Celery

from spinwheel_worker.settings import get_settings

NOTIFICATIONS_QUEUE = "notifications"

settings = get_settings()
settings.validate_production_settings()

celery_app = Celery(
    "spinwheel_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    # A message is only acknowledged once the gateway accepted it
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue=NOTIFICATIONS_QUEUE,
    task_routes={"spinwheel_worker.tasks.deliver_notification": {"queue": NOTIFICATIONS_QUEUE}},
    task_time_limit=60,
    task_soft_time_limit=45,
)

from spinwheel_worker import tasks  # noqa: F401, E402
