"""
Tests for the notification channels' message builders.
"""

from datetime import datetime, timezone

import pytest

from conftest import make_record
from monitor.config import NotifierSettings
from monitor.models import Priority
from monitor.notification import NotificationBuilder
from notifiers import CHANNEL_TYPES, build_channels
from notifiers.discord_channel import DiscordChannel
from notifiers.email_channel import EmailChannel
from notifiers.formatting import deadline_text, record_link, render_text
from notifiers.github_channel import GitHubChannel
from notifiers.slack_channel import SlackChannel
from notifiers.telegram_channel import MAX_MESSAGE_LENGTH, TelegramChannel

NOW = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)

SETTINGS = NotifierSettings(
    smtp_host="smtp.agency.gov",
    email_from="monitor@agency.gov",
    email_to=["team@agency.gov"],
    slack_webhook="https://hooks.slack.com/services/T/B/X",
    slack_channel="#bids",
    github_token="ghp_token",
    github_repository="acme/bids",
    github_assignees=["captain"],
    discord_webhook_url="https://discord.com/api/webhooks/1/abc",
    telegram_bot_token="123:abc",
    telegram_chat_id="42",
)


def notification(priority=Priority.MEDIUM, count=2, recipients=()):
    records = [make_record(f"N{i}", title=f"Radar | Phase {i}") for i in range(count)]
    return (
        NotificationBuilder(NOW)
        .with_query("Radar", priority)
        .with_recipients(list(recipients))
        .with_records(records)
        .with_subject(f"{count} New SAM.gov Opportunities - Radar")
        .build()
    )


def test_formatting_helpers():
    record = make_record("N1", uiLink=None, responseDeadLine=None)
    assert record_link(record) == "https://sam.gov/opp/N1/view"
    assert deadline_text(record) == "No deadline"
    assert deadline_text(make_record("N2")) == "2024-02-15"

    text = render_text(notification(count=3), limit=2)
    assert text.startswith("3 New SAM.gov Opportunities - Radar")
    assert "Priority: medium" in text
    assert "... and 1 more" in text


def test_build_channels_only_enabled():
    channels = build_channels(NotifierSettings(slack_webhook="https://hooks.slack.com/x"))
    assert [c.name for c in channels] == ["slack"]

    everything = build_channels(SETTINGS)
    assert [c.name for c in everything] == list(CHANNEL_TYPES)
    assert [c.name for c in build_channels(SETTINGS, only=["github"])] == ["github"]


def test_email_message():
    msg = EmailChannel(SETTINGS).build_message(notification(Priority.HIGH))

    assert msg["Subject"] == "2 New SAM.gov Opportunities - Radar"
    assert msg["To"] == "team@agency.gov"
    assert msg["X-Priority"] == "1"
    assert msg["Importance"] == "High"
    parts = msg.get_payload()
    assert [p.get_content_subtype() for p in parts] == ["plain", "html"]


def test_email_prefers_notification_recipients():
    msg = EmailChannel(SETTINGS).build_message(notification(recipients=["pm@agency.gov"]))
    assert msg["To"] == "pm@agency.gov"


def test_slack_payload():
    payload = SlackChannel(SETTINGS).build_payload(notification(count=12))

    assert payload["text"] == "12 New SAM.gov Opportunities - Radar"
    assert payload["channel"] == "#bids"
    blocks = payload["blocks"]
    assert blocks[0]["type"] == "header"
    sections = [b for b in blocks if b["type"] == "section"]
    # summary plus ten records
    assert len(sections) == 11
    assert blocks[-1]["elements"][0]["text"] == "... and 2 more"


def test_github_high_priority_opens_issue_per_record():
    issues = GitHubChannel(SETTINGS).build_issues(notification(Priority.HIGH, count=3))

    assert len(issues) == 3
    assert issues[0]["title"] == "[Radar] Radar | Phase 0"
    assert "priority-high" in issues[0]["labels"]
    assert issues[0]["assignees"] == ["captain"]
    assert "**Notice ID:** N0" in issues[0]["body"]


def test_github_summary_issue():
    issues = GitHubChannel(SETTINGS).build_issues(notification(Priority.LOW, count=3))

    assert len(issues) == 1
    assert issues[0]["title"] == "3 New SAM.gov Opportunities - Radar"
    assert "Radar \\| Phase 1" in issues[0]["body"]
    assert GitHubChannel(SETTINGS).issues_url == "https://api.github.com/repos/acme/bids/issues"


def test_discord_embed():
    embed = DiscordChannel(SETTINGS).build_embed(notification(Priority.HIGH, count=12))

    assert embed.title == "12 New SAM.gov Opportunities - Radar"
    assert embed.color.value == 0xFF0000
    assert len(embed.fields) == 10
    assert embed.footer.text == "... and 2 more"


def test_telegram_message():
    channel = TelegramChannel(SETTINGS)
    message = channel.build_message(notification(count=2))

    assert message.startswith("*2 New SAM.gov Opportunities - Radar*")
    assert "https://sam.gov/opp/N0/view" in message

    long_message = channel.build_message(notification(count=200))
    assert len(long_message) <= MAX_MESSAGE_LENGTH


@pytest.mark.asyncio
async def test_disabled_channels_do_nothing():
    empty = NotifierSettings()
    for channel_cls in CHANNEL_TYPES.values():
        channel = channel_cls(empty)
        assert not channel.enabled
        await channel.deliver(notification())
        await channel.close()
