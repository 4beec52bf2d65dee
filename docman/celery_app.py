from celery import Celery
from celery.schedules import crontab

from docman.config import settings

celery_app = Celery(
    "docman",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["docman.tasks.review_notifications"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
)

celery_app.conf.beat_schedule = {
    "send-due-review-notifications": {
        "task": "docman.tasks.review_notifications.send_due_review_notifications",
        "schedule": crontab(hour=settings.review_notify_cron_hour, minute=0),
    },
}
