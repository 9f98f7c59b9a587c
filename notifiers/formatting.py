"""
Plain-text rendering shared by the channels.
"""

from __future__ import annotations

from typing import List

from monitor.models import Notification, Record

SAM_BASE = "https://sam.gov/opp"


def record_link(record: Record) -> str:
    if record.ui_link:
        return record.ui_link
    return f"{SAM_BASE}/{record.notice_id}/view"


def deadline_text(record: Record) -> str:
    deadline = record.deadline
    if deadline is None:
        return "No deadline"
    return deadline.strftime("%Y-%m-%d")


def summary_line(notification: Notification) -> str:
    s = notification.summary
    parts = []
    if s.new_count:
        parts.append(f"{s.new_count} new")
    if s.updated_count:
        parts.append(f"{s.updated_count} updated")
    if s.upcoming_deadlines:
        parts.append(f"{s.upcoming_deadlines} due within 30 days")
    return ", ".join(parts) or f"{len(notification.records)} opportunities"


def record_lines(notification: Notification, limit: int = 20) -> List[str]:
    lines = []
    for record in notification.records[:limit]:
        agency = record.full_parent_path or "Unknown agency"
        lines.append(f"- {record.title} ({agency}) | Deadline: {deadline_text(record)} | {record_link(record)}")
    hidden = len(notification.records) - limit
    if hidden > 0:
        lines.append(f"... and {hidden} more")
    return lines


def render_text(notification: Notification, limit: int = 20) -> str:
    header = [
        notification.subject,
        f"Query: {notification.query_name} | Priority: {notification.priority.value}",
        summary_line(notification),
        "",
    ]
    return "\n".join(header + record_lines(notification, limit))
