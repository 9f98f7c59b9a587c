"""
Building, checking and timing notifications.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from .exceptions import NotificationValidationError
from .models import Notification, NotificationSummary, Priority, Record, utcnow

UPCOMING_WINDOW = timedelta(days=30)
URGENT_WINDOW = timedelta(days=3)
BURST_SIZE = 10


def _deadlines_within(records: Iterable[Record], window: timedelta, now: datetime) -> int:
    cutoff = now + window
    count = 0
    for record in records:
        deadline = record.deadline
        # No deadline means nothing to remind about
        if deadline is not None and now < deadline < cutoff:
            count += 1
    return count


def count_upcoming_deadlines(records: Iterable[Record], now: Optional[datetime] = None) -> int:
    """Records whose deadline falls within the next 30 days."""
    return _deadlines_within(records, UPCOMING_WINDOW, now or utcnow())


def has_urgent_deadline(records: Iterable[Record], now: Optional[datetime] = None) -> bool:
    return _deadlines_within(records, URGENT_WINDOW, now or utcnow()) > 0


def should_send_immediately(notification: Notification, now: Optional[datetime] = None) -> bool:
    """High priority, an imminent deadline or a large burst skips the digest."""
    if notification.priority == Priority.HIGH:
        return True
    if has_urgent_deadline(notification.records, now):
        return True
    return len(notification.records) >= BURST_SIZE


def validate_notification(notification: Notification) -> None:
    if not notification.query_name:
        raise NotificationValidationError("query name is required")
    if not notification.subject:
        raise NotificationValidationError("subject is required")
    if not notification.records:
        raise NotificationValidationError("at least one opportunity is required")
    if notification.priority not in (Priority.HIGH, Priority.MEDIUM, Priority.LOW):
        raise NotificationValidationError(f"invalid priority: {notification.priority}")


class NotificationBuilder:
    """Fluent construction of a Notification with computed summary stats."""

    def __init__(self, now: Optional[datetime] = None) -> None:
        self._now = now or utcnow()
        self._fields: dict = {"created_at": self._now, "metadata": {}}
        self._new: List[Record] = []
        self._updated: List[Record] = []

    def with_query(self, query_name: str, priority: Priority = Priority.MEDIUM) -> "NotificationBuilder":
        self._fields["query_name"] = query_name
        self._fields["priority"] = priority
        return self

    def with_recipients(self, recipients: List[str]) -> "NotificationBuilder":
        self._fields["recipients"] = list(recipients)
        return self

    def with_channels(self, channels: List[str]) -> "NotificationBuilder":
        self._fields["channels"] = list(channels)
        return self

    def with_records(self, records: List[Record]) -> "NotificationBuilder":
        self._new = list(records)
        self._fields["category"] = "new"
        return self

    def with_updated_records(self, records: List[Record]) -> "NotificationBuilder":
        self._updated = list(records)
        self._fields["category"] = "updated"
        return self

    def with_subject(self, subject: str) -> "NotificationBuilder":
        self._fields["subject"] = subject
        return self

    def with_category(self, category: str) -> "NotificationBuilder":
        self._fields["category"] = category
        return self

    def with_metadata(self, key: str, value: Any) -> "NotificationBuilder":
        self._fields["metadata"][key] = value
        return self

    def build(self) -> Notification:
        records = self._new + self._updated
        summary = NotificationSummary(
            new_count=len(self._new),
            updated_count=len(self._updated),
            upcoming_deadlines=count_upcoming_deadlines(records, self._now),
        )
        return Notification(records=records, summary=summary, **self._fields)
