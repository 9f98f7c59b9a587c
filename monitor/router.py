"""
Routes diff results to notification channels, immediately or via the digest.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from .digest import DEFAULT_MAX_AGE, DigestBatcher
from .exceptions import MultiChannelError
from .interfaces import Channel
from .models import DiffResult, Notification, NotificationPolicy
from .notification import NotificationBuilder, should_send_immediately, validate_notification

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Fans notifications out to an explicit list of channels."""

    def __init__(
        self,
        channels: Sequence[Channel],
        batcher: Optional[DigestBatcher] = None,
        digest_max_age: timedelta = DEFAULT_MAX_AGE,
    ) -> None:
        self.channels = list(channels)
        self.batcher = batcher or DigestBatcher()
        self.digest_max_age = digest_max_age

    @property
    def channel_names(self) -> List[str]:
        return [c.name for c in self.channels]

    def enabled_channels(self) -> List[str]:
        return [c.name for c in self.channels if c.enabled]

    def _targets(self, notification: Notification) -> List[Channel]:
        if not notification.channels:
            return list(self.channels)
        wanted = set(notification.channels)
        return [c for c in self.channels if c.name in wanted]

    async def send_now(self, notification: Notification) -> None:
        """Deliver to every target channel concurrently; raise once all have finished."""
        validate_notification(notification)

        targets = self._targets(notification)
        if not targets:
            logger.debug(f"No channels for notification '{notification.subject}'")
            return

        outcomes = await asyncio.gather(
            *(channel.deliver(notification) for channel in targets),
            return_exceptions=True,
        )

        errors: List[Tuple[str, BaseException]] = []
        for channel, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Channel {channel.name} failed for '{notification.subject}': {outcome}")
                errors.append((channel.name, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome

        if errors:
            raise MultiChannelError(errors)
        logger.info(f"Sent '{notification.subject}' to {len(targets)} channel(s)")

    async def route(
        self,
        query_name: str,
        diff: DiffResult,
        policy: NotificationPolicy,
        now: Optional[datetime] = None,
    ) -> int:
        """Notify about a query's new and updated records; returns notifications sent or queued."""
        errors: List[Tuple[str, BaseException]] = []
        handled = 0

        for category, records in (("new", diff.new), ("updated", diff.updated)):
            if not records:
                continue

            builder = (
                NotificationBuilder(now)
                .with_query(query_name, policy.priority)
                .with_recipients(policy.recipients)
                .with_channels(policy.channels)
                .with_subject(f"{len(records)} {category.capitalize()} SAM.gov Opportunities - {query_name}")
            )
            if category == "new":
                builder.with_records(records)
            else:
                builder.with_updated_records(records)
            notification = builder.build()

            if policy.digest and not should_send_immediately(notification, now):
                self.batcher.add(notification, now)
            else:
                try:
                    await self.send_now(notification)
                except MultiChannelError as e:
                    errors.extend(e.errors)
            handled += 1

        if self.batcher.should_flush(self.digest_max_age, now):
            try:
                await self.flush_digest(now)
            except MultiChannelError as e:
                errors.extend(e.errors)

        if errors:
            raise MultiChannelError(errors, handled=handled)
        return handled

    async def flush_digest(self, now: Optional[datetime] = None) -> int:
        return await self.batcher.flush(self, now)

    async def close(self) -> None:
        for channel in self.channels:
            await channel.close()
