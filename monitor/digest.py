"""
Queues lower-priority notifications and merges them into periodic digests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from .exceptions import MultiChannelError
from .models import Notification, PendingNotification, Priority, Record, utcnow
from .notification import NotificationBuilder

if TYPE_CHECKING:
    from .router import NotificationRouter

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=4)

PRIORITY_ORDER = (Priority.HIGH, Priority.MEDIUM, Priority.LOW)


def digest_subject(total: int, query_names: List[str]) -> str:
    subject = f"Digest: {total} SAM.gov Opportunities"
    if len(query_names) == 1:
        return f"{subject} - {query_names[0]}"
    if len(query_names) <= 3:
        return f"{subject} - {', '.join(query_names)}"
    return f"{subject} - {len(query_names)} Queries"


def merge(priority: Priority, bucket: List[PendingNotification], now: Optional[datetime] = None) -> Notification:
    """Fold a bucket of pending notifications into one digest notification.

    One digest per priority: recipients and channel filters of the members
    are unioned, so a channel-restricted query's records reach every channel
    another member of the bucket targets.
    """
    records: List[Record] = []
    query_names: List[str] = []
    recipients: List[str] = []
    channels: List[str] = []
    every_channel = False
    new_count = updated_count = 0

    for pending in sorted(bucket, key=lambda p: p.created_at):
        n = pending.notification
        records.extend(n.records)
        new_count += n.summary.new_count
        updated_count += n.summary.updated_count
        if n.query_name not in query_names:
            query_names.append(n.query_name)
        recipients.extend(r for r in n.recipients if r not in recipients)
        if not n.channels:
            every_channel = True
        channels.extend(c for c in n.channels if c not in channels)

    query_names.sort()
    digest = (
        NotificationBuilder(now)
        .with_query(f"Digest ({priority.value}-priority)", priority)
        .with_records(records)
        .with_recipients(recipients)
        .with_channels([] if every_channel else channels)
        .with_subject(digest_subject(new_count + updated_count, query_names))
        .with_category("digest")
        .with_metadata("digest", True)
        .with_metadata("queries", query_names)
        .with_metadata("query_count", len(query_names))
        .with_metadata("notification_count", len(bucket))
        .build()
    )
    # Counts come from the members, not from the merged record list
    digest.summary.new_count = new_count
    digest.summary.updated_count = updated_count
    return digest


class DigestBatcher:
    """Pending-notification queue flushed as one merged notification per priority."""

    def __init__(self) -> None:
        self._pending: List[PendingNotification] = []

    def add(self, notification: Notification, now: Optional[datetime] = None) -> None:
        self._pending.append(
            PendingNotification(
                notification=notification,
                priority=notification.priority,
                created_at=now or utcnow(),
            )
        )
        logger.info(
            f"Added notification to digest queue: {notification.query_name} "
            f"(priority: {notification.priority.value})"
        )

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_by_priority(self) -> Dict[Priority, int]:
        counts: Dict[Priority, int] = {}
        for pending in self._pending:
            counts[pending.priority] = counts.get(pending.priority, 0) + 1
        return counts

    def oldest_pending(self) -> Optional[datetime]:
        if not self._pending:
            return None
        return min(p.created_at for p in self._pending)

    def should_flush(self, max_age: timedelta = DEFAULT_MAX_AGE, now: Optional[datetime] = None) -> bool:
        oldest = self.oldest_pending()
        if oldest is None:
            return False
        return (now or utcnow()) - oldest >= max_age

    def _take(self) -> List[PendingNotification]:
        # Swap without awaiting, so anything added while a flush is sending lands in the next cycle
        snapshot, self._pending = self._pending, []
        return snapshot

    async def flush(self, router: "NotificationRouter", now: Optional[datetime] = None) -> int:
        """Send one merged notification per priority bucket; returns how many were sent."""
        snapshot = self._take()
        if not snapshot:
            return 0

        logger.info(f"Processing digest with {len(snapshot)} pending notifications")
        buckets: Dict[Priority, List[PendingNotification]] = {}
        for pending in snapshot:
            buckets.setdefault(pending.priority, []).append(pending)

        sent = 0
        errors: List[Tuple[str, BaseException]] = []
        for priority in PRIORITY_ORDER:
            bucket = buckets.get(priority)
            if not bucket:
                continue
            digest = merge(priority, bucket, now)
            try:
                await router.send_now(digest)
            except MultiChannelError as e:
                logger.error(f"Digest for {priority.value} priority failed, re-queueing {len(bucket)} items: {e}")
                # Original timestamps keep the bucket due on the next check
                self._pending.extend(bucket)
                errors.extend(e.errors)
                continue
            sent += 1
            logger.info(f"Sent digest notification for {priority.value} priority with {len(bucket)} items")

        if errors:
            raise MultiChannelError(errors)
        return sent
