"""
Slack channel: incoming-webhook messages built from blocks.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from monitor.config import NotifierSettings
from monitor.infra.http import HttpClient
from monitor.interfaces import Channel
from monitor.models import Notification, Priority

from .formatting import deadline_text, record_link, summary_line

logger = logging.getLogger(__name__)

MAX_RECORD_BLOCKS = 10

PRIORITY_EMOJI = {
    Priority.HIGH: ":rotating_light:",
    Priority.MEDIUM: ":bar_chart:",
    Priority.LOW: ":clipboard:",
}


class SlackChannel(Channel):
    """Posts notifications to a Slack incoming webhook."""

    name = "slack"

    def __init__(self, settings: NotifierSettings, http: Optional[HttpClient] = None) -> None:
        self.settings = settings
        self.http = http or HttpClient(max_retries=2)

    @property
    def enabled(self) -> bool:
        return self.settings.slack_enabled

    def build_payload(self, notification: Notification) -> Dict[str, Any]:
        emoji = PRIORITY_EMOJI[notification.priority]
        blocks: List[Dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": notification.subject[:150]},
            },
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"{emoji} *{notification.query_name}* – {summary_line(notification)}",
                },
            },
            {"type": "divider"},
        ]

        for record in notification.records[:MAX_RECORD_BLOCKS]:
            blocks.append(
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": (
                            f"*<{record_link(record)}|{record.title}>*\n"
                            f"{record.full_parent_path or 'Unknown agency'}\n"
                            f"Deadline: {deadline_text(record)}"
                        ),
                    },
                }
            )

        hidden = len(notification.records) - MAX_RECORD_BLOCKS
        if hidden > 0:
            blocks.append(
                {"type": "context", "elements": [{"type": "mrkdwn", "text": f"... and {hidden} more"}]}
            )

        payload: Dict[str, Any] = {
            "text": notification.subject,
            "blocks": blocks,
            "username": self.settings.slack_username,
        }
        if self.settings.slack_channel:
            payload["channel"] = self.settings.slack_channel
        return payload

    async def deliver(self, notification: Notification) -> None:
        if not self.enabled:
            return
        await self.http.post_json(self.settings.slack_webhook, self.build_payload(notification))
        logger.info(f"Slack message posted: {notification.subject}")

    async def close(self) -> None:
        await self.http.close()
