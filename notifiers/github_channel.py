"""
GitHub channel: opens issues for opportunities.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from monitor.config import NotifierSettings
from monitor.infra.http import HttpClient
from monitor.interfaces import Channel
from monitor.models import Notification, Priority, Record

from .formatting import deadline_text, record_link, summary_line

logger = logging.getLogger(__name__)

API_ROOT = "https://api.github.com"
MAX_INDIVIDUAL_ISSUES = 10


class GitHubChannel(Channel):
    """
    Creates issues in a repository.

    High-priority notifications get one issue per opportunity (capped);
    everything else becomes a single summary issue.
    """

    name = "github"

    def __init__(self, settings: NotifierSettings, http: Optional[HttpClient] = None) -> None:
        self.settings = settings
        self.http = http or HttpClient(
            max_retries=2,
            default_headers={
                "Accept": "application/vnd.github+json",
                "User-Agent": "SAM.gov-Monitor/1.0",
            },
        )

    @property
    def enabled(self) -> bool:
        return self.settings.github_enabled

    @property
    def issues_url(self) -> str:
        return f"{API_ROOT}/repos/{self.settings.github_repository}/issues"

    def _labels(self, notification: Notification) -> List[str]:
        labels = list(self.settings.github_labels)
        labels.append(f"priority-{notification.priority.value}")
        return labels

    def _issue(self, title: str, body: str, notification: Notification) -> Dict[str, Any]:
        issue: Dict[str, Any] = {"title": title[:256], "body": body, "labels": self._labels(notification)}
        if self.settings.github_assignees:
            issue["assignees"] = list(self.settings.github_assignees)
        return issue

    @staticmethod
    def _record_body(record: Record) -> str:
        lines = [
            f"**Notice ID:** {record.notice_id}",
            f"**Agency:** {record.full_parent_path or 'Unknown'}",
            f"**Type:** {record.type or 'Unknown'}",
            f"**Posted:** {record.posted_date or 'Unknown'}",
            f"**Deadline:** {deadline_text(record)}",
        ]
        if record.solicitation_number:
            lines.append(f"**Solicitation:** {record.solicitation_number}")
        if record.type_of_set_aside:
            lines.append(f"**Set-aside:** {record.type_of_set_aside}")
        if record.naics_code:
            lines.append(f"**NAICS:** {record.naics_code}")
        lines.append("")
        lines.append(f"[View on SAM.gov]({record_link(record)})")
        return "\n".join(lines)

    def build_issues(self, notification: Notification) -> List[Dict[str, Any]]:
        if notification.priority == Priority.HIGH:
            return [
                self._issue(f"[{notification.query_name}] {record.title}", self._record_body(record), notification)
                for record in notification.records[:MAX_INDIVIDUAL_ISSUES]
            ]

        rows = ["| Title | Agency | Deadline |", "|---|---|---|"]
        for record in notification.records:
            title = record.title.replace("|", "\\|")
            rows.append(f"| [{title}]({record_link(record)}) | {record.full_parent_path or ''} | {deadline_text(record)} |")
        body = "\n".join([f"**Query:** {notification.query_name}", summary_line(notification), ""] + rows)
        return [self._issue(notification.subject, body, notification)]

    async def deliver(self, notification: Notification) -> None:
        if not self.enabled:
            return
        headers = {"Authorization": f"Bearer {self.settings.github_token}"}
        issues = self.build_issues(notification)
        for issue in issues:
            await self.http.post_json(self.issues_url, issue, headers=headers)
        logger.info(f"Created {len(issues)} GitHub issue(s) for {notification.query_name}")

    async def close(self) -> None:
        await self.http.close()
