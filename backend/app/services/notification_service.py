"""Template-based operator alerts."""

from __future__ import annotations

import logging
from enum import Enum

from backend.app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    INVENTORY_RECONCILIATION_REQUIRED = "INVENTORY_RECONCILIATION_REQUIRED"
    ORPHANED_BILL = "ORPHANED_BILL"


_TEMPLATES: dict[NotificationType, dict[str, str]] = {
    NotificationType.INVENTORY_RECONCILIATION_REQUIRED: {
        "subject": "Stock reconciliation required: Bill {bill_number}",
        "body": (
            "<h2>Stock Reconciliation Required</h2>"
            "<p>Bill <strong>{bill_number}</strong> was committed but stock "
            "could not be deducted for: <strong>{items}</strong>.</p>"
            "<p>Reason: {reason}</p>"
            "<p>Adjust the stock counts and resolve the flags in the "
            "reconciliation queue.</p>"
        ),
    },
    NotificationType.ORPHANED_BILL: {
        "subject": "Orphaned bill needs review: {bill_number}",
        "body": (
            "<h2>Orphaned Bill</h2>"
            "<p>Bill <strong>{bill_number}</strong> was saved without its "
            "items and could not be voided automatically.</p>"
            "<p>Reason: {reason}</p>"
        ),
    },
}


class NotificationService:
    """Send typed notifications using predefined templates."""

    def __init__(self) -> None:
        self._email = EmailService()

    def render(self, notification_type: NotificationType, **kwargs: str) -> tuple[str, str]:
        template = _TEMPLATES[notification_type]
        return template["subject"].format(**kwargs), template["body"].format(**kwargs)

    def send(
        self,
        notification_type: NotificationType,
        recipient_email: str,
        **kwargs: str,
    ) -> bool:
        """Render the template for *notification_type* and send via email."""
        if notification_type not in _TEMPLATES:
            logger.error("Unknown notification type: %s", notification_type)
            return False

        subject, body = self.render(notification_type, **kwargs)
        return self._email.send(to=recipient_email, subject=subject, body_html=body)
