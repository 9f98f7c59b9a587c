"""
Tests for notification construction, validation and send timing.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_record
from monitor.exceptions import NotificationValidationError
from monitor.models import Notification, Priority
from monitor.notification import (
    NotificationBuilder,
    count_upcoming_deadlines,
    has_urgent_deadline,
    should_send_immediately,
    validate_notification,
)

NOW = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)


def due_in(days):
    return (NOW + timedelta(days=days)).isoformat()


def test_builder_computes_summary():
    records = [
        make_record("A", responseDeadLine=due_in(5)),
        make_record("B", responseDeadLine=due_in(45)),
        make_record("C", responseDeadLine=None),
    ]
    notification = (
        NotificationBuilder(NOW)
        .with_query("DARPA AI", Priority.HIGH)
        .with_recipients(["ops@agency.gov"])
        .with_channels(["email"])
        .with_records(records)
        .with_subject("3 New SAM.gov Opportunities - DARPA AI")
        .with_metadata("run", 7)
        .build()
    )

    assert notification.query_name == "DARPA AI"
    assert notification.priority == Priority.HIGH
    assert notification.category == "new"
    assert notification.summary.new_count == 3
    assert notification.summary.updated_count == 0
    assert notification.summary.upcoming_deadlines == 1
    assert notification.metadata == {"run": 7}
    assert notification.created_at == NOW


def test_builder_updated_category():
    notification = (
        NotificationBuilder(NOW)
        .with_query("q")
        .with_updated_records([make_record("A")])
        .with_subject("1 Updated SAM.gov Opportunities - q")
        .build()
    )
    assert notification.category == "updated"
    assert notification.summary.updated_count == 1
    assert notification.summary.new_count == 0


def test_deadline_windows():
    records = [
        make_record("PAST", responseDeadLine=due_in(-1)),
        make_record("URGENT", responseDeadLine=due_in(2)),
        make_record("SOON", responseDeadLine=due_in(20)),
        make_record("LATER", responseDeadLine=due_in(40)),
        make_record("BAD", responseDeadLine="not a date"),
    ]
    assert count_upcoming_deadlines(records, NOW) == 2
    assert has_urgent_deadline(records, NOW)
    assert not has_urgent_deadline(records[2:], NOW)


def _notification(priority=Priority.MEDIUM, count=1, deadline_days=60):
    records = [make_record(f"N{i}", responseDeadLine=due_in(deadline_days)) for i in range(count)]
    return NotificationBuilder(NOW).with_query("q", priority).with_records(records).with_subject("s").build()


def test_should_send_immediately():
    assert should_send_immediately(_notification(Priority.HIGH), NOW)
    assert should_send_immediately(_notification(deadline_days=1), NOW)
    assert should_send_immediately(_notification(count=10), NOW)
    assert not should_send_immediately(_notification(count=9), NOW)
    assert not should_send_immediately(_notification(Priority.LOW), NOW)


def test_validate_notification():
    validate_notification(_notification())

    with pytest.raises(NotificationValidationError, match="query name"):
        validate_notification(Notification(query_name="", subject="s", records=[make_record("A")]))
    with pytest.raises(NotificationValidationError, match="subject"):
        validate_notification(Notification(query_name="q", records=[make_record("A")]))
    with pytest.raises(NotificationValidationError, match="at least one"):
        validate_notification(Notification(query_name="q", subject="s"))


def test_priority_is_case_insensitive():
    assert Notification(query_name="q", priority="HIGH").priority == Priority.HIGH
