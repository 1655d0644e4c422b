"""Outgoing customer email for the web frontend."""
from __future__ import annotations

import logging
import smtplib
from typing import Optional

from ..emailing import EmailClient, EmailContent, EmailTemplates
from .config import (
    APP_URL,
    EMAIL_FROM,
    SITE_NAME,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
)

logger = logging.getLogger(__name__)

email_client = EmailClient(
    SMTP_HOST,
    SMTP_PORT,
    username=SMTP_USERNAME,
    password=SMTP_PASSWORD,
    use_tls=SMTP_USE_TLS,
)
templates = EmailTemplates(SITE_NAME, APP_URL)


def use_site_name(name: Optional[str]) -> None:
    """Brand outgoing mail and page layouts with ``name``; ``None`` restores the configured default."""

    templates.site_name = name or SITE_NAME


def send_email(to: str, content: EmailContent, *, reply_to: Optional[str] = None) -> bool:
    """Send ``content`` to ``to``; a failure is logged and reported as ``False``."""

    if not to:
        return False
    subject = " ".join(content.subject.splitlines())
    try:
        message = email_client.build_message(
            subject,
            content.text,
            sender=f"{templates.site_name} <{EMAIL_FROM}>",
            recipients=[to],
            html=content.html,
            reply_to=reply_to,
        )
        return email_client.send(message)
    except (ValueError, OSError, smtplib.SMTPException) as exc:
        logger.warning("Could not send %r to %s: %s", subject, to, exc)
        return False


__all__ = ["email_client", "templates", "send_email", "use_site_name"]
