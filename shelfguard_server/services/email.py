# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Email sending service. Logs to console when SMTP not configured."""

import asyncio
import logging
import smtplib
from collections.abc import Awaitable, Callable
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from shelfguard_server.config import settings

logger = logging.getLogger(__name__)

# (to, subject, plain body, html body) -> delivered?
Dispatcher = Callable[[str, str, str, str | None], Awaitable[bool]]


def _deliver(to: str, subject: str, body: str, html_body: str | None) -> None:
    if html_body:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from
    msg["To"] = to
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password or "")
        server.sendmail(settings.smtp_from, [to], msg.as_string())


async def send_email(to: str, subject: str, body: str, html_body: str | None = None) -> bool:
    """Send an email (plain, plus HTML when given). Returns False if delivery failed.

    Without SMTP settings the message is logged instead and counts as delivered.
    """
    if not (settings.smtp_host and settings.smtp_user):
        logger.info("Email (SMTP not configured): To=%s Subject=%s Body=%s", to, subject, body[:200])
        return True
    try:
        await asyncio.to_thread(_deliver, to, subject, body, html_body)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to, e)
        return False
    return True
