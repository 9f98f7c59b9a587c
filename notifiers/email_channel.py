"""
Email channel: SMTP delivery with text and HTML parts.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from monitor.config import NotifierSettings
from monitor.interfaces import Channel
from monitor.models import Notification, Priority

from .formatting import deadline_text, record_link, render_text, summary_line

logger = logging.getLogger(__name__)

PRIORITY_HEADERS = {
    Priority.HIGH: ("1", "High"),
    Priority.MEDIUM: ("3", "Normal"),
    Priority.LOW: ("5", "Low"),
}


class EmailChannel(Channel):
    """Sends notifications through an SMTP relay."""

    name = "email"

    def __init__(self, settings: NotifierSettings, timeout: float = 30.0) -> None:
        self.settings = settings
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.settings.email_enabled

    def _recipients(self, notification: Notification) -> List[str]:
        return list(notification.recipients) or list(self.settings.email_to)

    def build_message(self, notification: Notification, recipients: Optional[List[str]] = None) -> MIMEMultipart:
        recipients = recipients or self._recipients(notification)
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.subject
        msg["From"] = self.settings.email_from
        msg["To"] = ", ".join(recipients)

        x_priority, importance = PRIORITY_HEADERS[notification.priority]
        msg["X-Priority"] = x_priority
        msg["Importance"] = importance

        msg.attach(MIMEText(render_text(notification), "plain", "utf-8"))
        msg.attach(MIMEText(self._render_html(notification), "html", "utf-8"))
        return msg

    @staticmethod
    def _render_html(notification: Notification) -> str:
        rows = "".join(
            "<tr><td><a href=\"{link}\">{title}</a></td><td>{agency}</td><td>{deadline}</td></tr>".format(
                link=html.escape(record_link(r)),
                title=html.escape(r.title),
                agency=html.escape(r.full_parent_path or ""),
                deadline=html.escape(deadline_text(r)),
            )
            for r in notification.records
        )
        return (
            f"<html><body><h2>{html.escape(notification.subject)}</h2>"
            f"<p>{html.escape(summary_line(notification))}</p>"
            f"<table><tr><th>Title</th><th>Agency</th><th>Deadline</th></tr>{rows}</table>"
            "</body></html>"
        )

    def _send(self, msg: MIMEMultipart, recipients: List[str]) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=self.timeout) as server:
            if s.smtp_use_tls:
                server.starttls()
            if s.smtp_username:
                server.login(s.smtp_username, s.smtp_password)
            server.sendmail(s.email_from, recipients, msg.as_string())

    async def deliver(self, notification: Notification) -> None:
        if not self.enabled:
            return
        recipients = self._recipients(notification)
        msg = self.build_message(notification, recipients)
        # smtplib blocks; keep it off the event loop
        await asyncio.to_thread(self._send, msg, recipients)
        logger.info(f"Email sent to {len(recipients)} recipient(s): {notification.subject}")
