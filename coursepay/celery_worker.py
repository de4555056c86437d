# coursepay/celery_worker.py
from celery import Celery

from coursepay.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    PENDING_CHECK_INTERVAL_SECONDS,
)

celery_app = Celery(
    "coursepay",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks must be imported explicitly so the worker registers them
celery_app.conf.imports = (
    "coursepay.tasks.verify_payments",
    "coursepay.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "verify-pending-payments": {
        "task": "coursepay.tasks.verify_payments.verify_pending_payments_task",
        "schedule": float(PENDING_CHECK_INTERVAL_SECONDS),
    },
}

celery_app.conf.timezone = "UTC"
