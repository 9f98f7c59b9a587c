"""
Telegram channel: bot messages to a single chat.
"""

from __future__ import annotations

import logging
from typing import Optional

from telegram import Bot

from monitor.config import NotifierSettings
from monitor.interfaces import Channel
from monitor.models import Notification

from .formatting import deadline_text, record_link, summary_line

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096
MAX_RECORDS = 15


def _escape(text: str) -> str:
    for char in ("_", "*", "`", "["):
        text = text.replace(char, f"\\{char}")
    return text


class TelegramChannel(Channel):
    """Sends notifications via a Telegram bot."""

    name = "telegram"

    def __init__(self, settings: NotifierSettings, bot: Optional[Bot] = None) -> None:
        self.settings = settings
        self._bot = bot
        self._initialized = bot is not None

    @property
    def enabled(self) -> bool:
        return self.settings.telegram_enabled

    def build_message(self, notification: Notification) -> str:
        lines = [
            f"*{_escape(notification.subject)}*",
            _escape(summary_line(notification)),
            "",
        ]
        for record in notification.records[:MAX_RECORDS]:
            lines.append(f"• [{_escape(record.title)}]({record_link(record)})")
            lines.append(f"  Deadline: {deadline_text(record)}")
        hidden = len(notification.records) - MAX_RECORDS
        if hidden > 0:
            lines.append(f"... and {hidden} more")

        message = "\n".join(lines)
        if len(message) > MAX_MESSAGE_LENGTH:
            message = message[: MAX_MESSAGE_LENGTH - 3] + "..."
        return message

    async def _get_bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self.settings.telegram_bot_token)
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True
        return self._bot

    async def deliver(self, notification: Notification) -> None:
        if not self.enabled:
            return
        bot = await self._get_bot()
        await bot.send_message(
            chat_id=self.settings.telegram_chat_id,
            text=self.build_message(notification),
            parse_mode="Markdown",
            disable_web_page_preview=True,
        )
        logger.info(f"Telegram message sent: {notification.subject}")

    async def close(self) -> None:
        if self._bot is not None and self._initialized:
            await self._bot.shutdown()
            self._initialized = False
