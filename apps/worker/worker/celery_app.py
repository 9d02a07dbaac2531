import os

from celery import Celery

celery_app = Celery(
    "family_grocery_worker",
    broker=os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0"),
    backend=os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/1"),
    include=["worker.tasks"],
)

celery_app.conf.beat_schedule = {
    "daily-member-email-backfill": {
        "task": "worker.tasks.backfill_member_emails",
        "schedule": 86400.0,
    },
}
celery_app.conf.timezone = "UTC"
