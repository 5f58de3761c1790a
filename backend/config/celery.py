import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("lodgepoint")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


app.conf.beat_schedule = {
    "expire-pending-bookings": {
        "task": "bookings.expire_pending_bookings",
        "schedule": crontab(minute="*/10"),
    },
    "retry-failed-receipts": {
        "task": "bookings.retry_failed_receipts",
        "schedule": crontab(minute=30),
    },
}
