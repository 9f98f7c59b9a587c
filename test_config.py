"""
Tests for query configuration loading and environment settings.
"""

import textwrap

import pytest

from monitor.config import (
    NotifierSettings,
    RuntimeSettings,
    load_config,
    validate_environment,
)
from monitor.exceptions import ConfigError
from monitor.models import Priority

VALID_YAML = """
queries:
  - name: DARPA AI Research
    parameters:
      title: artificial intelligence
      organizationName: DARPA
      ptype: [s, k]
    notification:
      priority: HIGH
      channels: [email, slack]
      digest: false
  - name: Cyber Small Business
    parameters:
      naicsCode: ["541512"]
      lookbackDays: 14
    advanced:
      exclude: [construction]
      minValue: 1000
      maxDaysOld: 30
  - name: Parked
    enabled: false
    parameters:
      state: VA
"""


def write_config(tmp_path, text):
    path = tmp_path / "queries.yaml"
    path.write_text(textwrap.dedent(text))
    return str(path)


def test_load_valid_config(tmp_path):
    config = load_config(write_config(tmp_path, VALID_YAML))

    assert [q.name for q in config.queries] == ["DARPA AI Research", "Cyber Small Business", "Parked"]
    assert [q.name for q in config.enabled_queries()] == ["DARPA AI Research", "Cyber Small Business"]
    assert [q.name for q in config.high_priority_queries()] == ["DARPA AI Research"]

    darpa = config.queries[0]
    assert darpa.notification.priority == Priority.HIGH
    assert darpa.notification.digest is False
    assert darpa.parameters["ptype"] == ["s", "k"]

    cyber = config.queries[1]
    assert cyber.notification.priority == Priority.MEDIUM
    assert cyber.advanced.min_value == 1000
    assert cyber.advanced.max_days_old == 30
    assert cyber.parameters["lookbackDays"] == 14


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="reading config file"):
        load_config(str(tmp_path / "nope.yaml"))


def test_bad_yaml(tmp_path):
    with pytest.raises(ConfigError, match="parsing config file"):
        load_config(write_config(tmp_path, "queries: [unclosed"))


def test_not_a_mapping(tmp_path):
    with pytest.raises(ConfigError, match="mapping"):
        load_config(write_config(tmp_path, "- just\n- a list\n"))


@pytest.mark.parametrize(
    "text, message",
    [
        ("queries: []", "no queries configured"),
        (
            """
            queries:
              - name: a
                enabled: false
                parameters: {title: x}
            """,
            "no enabled queries",
        ),
        (
            """
            queries:
              - name: test
                parameters: {title: x}
            """,
            "placeholder",
        ),
        (
            """
            queries:
              - name: Example search
                parameters: {title: x}
            """,
            "placeholder",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x}
              - name: a
                parameters: {title: y}
            """,
            "duplicate query name",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x}
                notification: {channels: [pager]}
            """,
            "invalid notification channel",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x}
                advanced: {maxDaysOld: 400}
            """,
            "maxDaysOld",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x}
                advanced: {minValue: 10, maxValue: 5}
            """,
            "minValue cannot be greater",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x, lookbackDays: 0}
            """,
            "lookbackDays",
        ),
        (
            """
            queries:
              - name: a
                parameters: {naicsCode: "12"}
            """,
            "exactly 6 digits",
        ),
        (
            """
            queries:
              - name: a
                parameters: {title: x, nested: {a: b}}
            """,
            "validating config",
        ),
    ],
)
def test_invalid_configs(tmp_path, text, message):
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(tmp_path, text))


def test_disabled_query_parameters_are_not_checked(tmp_path):
    text = """
    queries:
      - name: a
        parameters: {title: x}
      - name: b
        enabled: false
        parameters: {naicsCode: "12"}
    """
    assert len(load_config(write_config(tmp_path, text)).queries) == 2


def test_notifier_settings_from_env():
    settings = NotifierSettings.from_env(
        {
            "SMTP_HOST": "smtp.agency.gov",
            "SMTP_PORT": "2525",
            "SMTP_USE_TLS": "false",
            "EMAIL_FROM": "monitor@agency.gov",
            "EMAIL_TO": "a@agency.gov, b@agency.gov",
            "SLACK_WEBHOOK": "https://hooks.slack.com/services/T/B/X",
            "GITHUB_TOKEN": "ghp_token",
            "GITHUB_REPOSITORY": "no-slash",
            "GITHUB_LABELS": "bids,federal",
        }
    )

    assert settings.smtp_port == 2525
    assert settings.smtp_use_tls is False
    assert settings.email_to == ["a@agency.gov", "b@agency.gov"]
    assert settings.github_labels == ["bids", "federal"]
    assert settings.email_enabled
    assert settings.slack_enabled
    assert not settings.github_enabled
    assert not settings.discord_enabled
    assert not settings.telegram_enabled


def test_notifier_settings_rejects_bad_port():
    with pytest.raises(ConfigError):
        NotifierSettings.from_env({"SMTP_PORT": "not-a-port"})


def test_runtime_settings_from_env():
    settings = RuntimeSettings.from_env({"SAM_API_KEY": "abc123", "SAM_MAX_RETRIES": "5", "SAM_CACHE_TTL": "60"})
    assert settings.api_key == "abc123"
    assert settings.max_retries == 5
    assert settings.cache_ttl == 60.0
    assert settings.base_url.startswith("https://api.sam.gov/")


def test_validate_environment():
    assert validate_environment({"SAM_API_KEY": "real-key-123"}) == []
    assert validate_environment({}) == ["missing required environment variable: SAM_API_KEY"]
    assert "placeholder" in validate_environment({"SAM_API_KEY": "your_api_key_here"})[0]
