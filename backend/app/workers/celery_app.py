"""Celery app for alert delivery and settlement housekeeping.

    celery -A backend.app.workers.celery_app worker --loglevel=info
    celery -A backend.app.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from backend.app.core.config import settings

celery = Celery(
    "pharmacy_billing",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "backend.app.workers.tasks.notifications",
        "backend.app.workers.tasks.maintenance",
    ],
)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="Asia/Kolkata",
    enable_utc=True,
    # Alerts must survive a worker crash; acknowledge only after delivery.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=24 * 3600,
    beat_schedule={
        "flag-stale-pending-bills": {
            "task": "backend.app.workers.tasks.maintenance.flag_stale_pending_bills",
            "schedule": crontab(minute="*/15"),
        },
    },
)
