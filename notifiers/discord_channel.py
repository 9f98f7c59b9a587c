"""
Discord channel: webhook messages with embeds.
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp
import discord
from discord import Embed

from monitor.config import NotifierSettings
from monitor.interfaces import Channel
from monitor.models import Notification, Priority

from .formatting import deadline_text, record_link, summary_line

logger = logging.getLogger(__name__)

# Discord caps embeds at 25 fields
MAX_FIELDS = 10

PRIORITY_COLORS = {
    Priority.HIGH: 0xFF0000,
    Priority.MEDIUM: 0xFF8C00,
    Priority.LOW: 0x3498DB,
}


class DiscordChannel(Channel):
    """Sends notifications through a Discord webhook."""

    name = "discord"

    def __init__(self, settings: NotifierSettings, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    @property
    def enabled(self) -> bool:
        return self.settings.discord_enabled

    def build_embed(self, notification: Notification) -> Embed:
        embed = Embed(
            title=notification.subject[:256],
            description=f"**{notification.query_name}** – {summary_line(notification)}",
            color=PRIORITY_COLORS[notification.priority],
            timestamp=notification.created_at,
        )
        for record in notification.records[:MAX_FIELDS]:
            embed.add_field(
                name=record.title[:256] or record.notice_id,
                value=(
                    f"{record.full_parent_path or 'Unknown agency'}\n"
                    f"Deadline: {deadline_text(record)}\n"
                    f"[View]({record_link(record)})"
                )[:1024],
                inline=False,
            )
        hidden = len(notification.records) - MAX_FIELDS
        if hidden > 0:
            embed.set_footer(text=f"... and {hidden} more")
        return embed

    async def _webhook(self) -> discord.Webhook:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return discord.Webhook.from_url(self.settings.discord_webhook_url, session=self._session)

    async def deliver(self, notification: Notification) -> None:
        if not self.enabled:
            return
        webhook = await self._webhook()
        await webhook.send(embed=self.build_embed(notification), username="SAM.gov Monitor")
        logger.info(f"Discord message sent: {notification.subject}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
