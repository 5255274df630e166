"""Outbound mail for operator alerts."""

from __future__ import annotations

import logging
import re
import smtplib
from email.message import EmailMessage

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")


def _plain_text(body_html: str) -> str:
    return _TAG.sub("", body_html).strip()


class EmailService:
    """Deliver alert mail through the configured SMTP relay.

    Every message carries a plain-text part alongside the HTML so that
    pager gateways which strip markup still show the bill details.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME if username is None else username
        self.password = settings.SMTP_PASSWORD if password is None else password

    def build_message(self, to: str, subject: str, body_html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.username or f"alerts@{self.host}"
        msg["To"] = to
        msg.set_content(_plain_text(body_html))
        msg.add_alternative(body_html, subtype="html")
        return msg

    def send(self, to: str, subject: str, body_html: str) -> bool:
        """Returns ``True`` once the relay accepted the message."""
        if not settings.NOTIFICATION_ENABLED:
            logger.info("Alert mail disabled, not sending %r to %s", subject, to)
            return False

        msg = self.build_message(to, subject, body_html)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as relay:
                if self.port != 25:
                    relay.starttls()
                if self.username:
                    relay.login(self.username, self.password)
                relay.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("SMTP relay %s:%s rejected alert to %s", self.host, self.port, to)
            return False
        logger.info("Alert %r mailed to %s", subject, to)
        return True
