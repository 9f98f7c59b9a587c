"""
Notification channels.

Each channel reads its credentials from :class:`~monitor.config.NotifierSettings`
and stays silent when they are incomplete; :func:`build_channels` is the only
place channels are constructed.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from monitor.config import NotifierSettings
from monitor.interfaces import Channel

from .discord_channel import DiscordChannel
from .email_channel import EmailChannel
from .github_channel import GitHubChannel
from .slack_channel import SlackChannel
from .telegram_channel import TelegramChannel

logger = logging.getLogger(__name__)

CHANNEL_TYPES = {
    "email": EmailChannel,
    "slack": SlackChannel,
    "github": GitHubChannel,
    "discord": DiscordChannel,
    "telegram": TelegramChannel,
}


def build_channels(settings: NotifierSettings, only: Optional[Sequence[str]] = None) -> List[Channel]:
    """Construct every channel whose settings are complete."""
    channels: List[Channel] = []
    for name, channel_cls in CHANNEL_TYPES.items():
        if only is not None and name not in only:
            continue
        channel = channel_cls(settings)
        if channel.enabled:
            channels.append(channel)
            logger.info(f"Enabled notification channel: {name}")
        else:
            logger.debug(f"Notification channel {name} not configured")
    return channels


__all__ = [
    "CHANNEL_TYPES",
    "DiscordChannel",
    "EmailChannel",
    "GitHubChannel",
    "SlackChannel",
    "TelegramChannel",
    "build_channels",
]
