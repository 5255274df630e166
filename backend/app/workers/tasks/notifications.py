"""Operator alert delivery."""

from __future__ import annotations

import logging

from backend.app.workers.celery_app import celery

logger = logging.getLogger(__name__)


@celery.task(
    bind=True,
    name="backend.app.workers.tasks.notifications.send_operator_alert",
    max_retries=3,
    default_retry_delay=60,
)
def send_operator_alert(
    self,
    notification_type: str,
    recipient_email: str,
    template_kwargs: dict,
) -> dict:
    """Email an operator about a bill that needs manual follow-up.

    Delivery failures are retried; an unknown alert type is dropped.
    """
    from backend.app.core.config import settings
    from backend.app.services.notification_service import (
        NotificationService,
        NotificationType,
    )

    try:
        alert = NotificationType(notification_type)
    except ValueError:
        logger.error("Dropping alert of unknown type %s", notification_type)
        return {"status": "error", "detail": f"Unknown type: {notification_type}"}

    if NotificationService().send(alert, recipient_email, **template_kwargs):
        return {"status": "sent"}
    if settings.NOTIFICATION_ENABLED:
        raise self.retry()
    return {"status": "skipped"}
