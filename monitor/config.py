"""
Query configuration (YAML) and environment-driven settings.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigError
from .models import Query
from .query_builder import validate_parameters

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/queries.yaml"
DEFAULT_STATE_PATH = "state/monitor.json"
DEFAULT_LOOKBACK_DAYS = 3

CHANNEL_NAMES = ("email", "slack", "github", "discord", "telegram")

REQUIRED_ENV = ("SAM_API_KEY",)
OPTIONAL_ENV = (
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "EMAIL_FROM",
    "EMAIL_TO",
    "SLACK_WEBHOOK",
    "GITHUB_TOKEN",
    "GITHUB_REPOSITORY",
    "DISCORD_WEBHOOK_URL",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
)

PLACEHOLDER_MARKERS = ("test", "example", "changeme", "your_")


def _is_placeholder(value: str) -> bool:
    lowered = value.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


class MonitorConfig(BaseModel):
    """The validated contents of the queries file."""

    queries: List[Query]

    @field_validator("queries")
    @classmethod
    def _check_queries(cls, queries: List[Query]) -> List[Query]:
        if not queries:
            raise ValueError("no queries configured")

        seen = set()
        for i, query in enumerate(queries):
            prefix = f"query {i} ({query.name})"
            name = query.name.strip()
            if not name:
                raise ValueError(f"query {i}: query name is required")
            if name == "test" or "example" in name.lower():
                raise ValueError(f"{prefix}: query name '{query.name}' appears to be a placeholder")
            if name in seen:
                raise ValueError(f"{prefix}: duplicate query name")
            seen.add(name)

            for channel in query.notification.channels:
                if channel not in CHANNEL_NAMES:
                    raise ValueError(f"{prefix}: invalid notification channel '{channel}'")

            advanced = query.advanced
            if advanced.max_days_old < 0 or advanced.max_days_old > 365:
                raise ValueError(f"{prefix}: maxDaysOld must be between 0 and 365")
            if advanced.min_value is not None and advanced.min_value < 0:
                raise ValueError(f"{prefix}: minValue cannot be negative")
            if (
                advanced.min_value is not None
                and advanced.max_value is not None
                and advanced.min_value > advanced.max_value
            ):
                raise ValueError(f"{prefix}: minValue cannot be greater than maxValue")

            lookback = query.parameters.get("lookbackDays")
            if lookback is not None:
                if isinstance(lookback, bool) or not isinstance(lookback, int):
                    raise ValueError(f"{prefix}: lookbackDays must be an integer")
                if not 1 <= lookback <= 365:
                    raise ValueError(f"{prefix}: lookbackDays must be between 1 and 365")
        return queries

    @model_validator(mode="after")
    def _check_enabled(self) -> "MonitorConfig":
        if not self.enabled_queries():
            raise ValueError("no enabled queries found")
        return self

    def enabled_queries(self) -> List[Query]:
        return [q for q in self.queries if q.enabled]

    def high_priority_queries(self) -> List[Query]:
        return [q for q in self.enabled_queries() if q.notification.priority.value == "high"]


def load_config(path: str = DEFAULT_CONFIG_PATH) -> MonitorConfig:
    """Read and validate a queries file; every problem surfaces as ConfigError."""
    if not path:
        raise ConfigError("config file path is required")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"parsing config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping with a 'queries' list")

    try:
        config = MonitorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"validating config: {e}") from e

    for query in config.enabled_queries():
        try:
            validate_parameters(query)
        except ValueError as e:
            raise ConfigError(f"query '{query.name}': {e}") from e

    logger.info(f"Loaded {len(config.queries)} queries ({len(config.enabled_queries())} enabled) from {path}")
    return config


# ---------------------------------------------- #
# Environment
def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class NotifierSettings(BaseModel):
    """Channel credentials; a channel with incomplete settings is disabled."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""
    email_to: List[str] = Field(default_factory=list)

    slack_webhook: str = ""
    slack_channel: str = ""
    slack_username: str = "SAM.gov Monitor"

    github_token: str = ""
    github_repository: str = ""
    github_labels: List[str] = Field(default_factory=lambda: ["sam-gov", "opportunity"])
    github_assignees: List[str] = Field(default_factory=list)

    discord_webhook_url: str = ""

    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "NotifierSettings":
        env = os.environ if env is None else env
        values: Dict[str, object] = {
            "smtp_host": env.get("SMTP_HOST", ""),
            "smtp_username": env.get("SMTP_USERNAME", ""),
            "smtp_password": env.get("SMTP_PASSWORD", ""),
            "smtp_use_tls": _flag(env.get("SMTP_USE_TLS"), True),
            "email_from": env.get("EMAIL_FROM", ""),
            "email_to": _split(env.get("EMAIL_TO")),
            "slack_webhook": env.get("SLACK_WEBHOOK", ""),
            "slack_channel": env.get("SLACK_CHANNEL", ""),
            "github_token": env.get("GITHUB_TOKEN", ""),
            "github_repository": env.get("GITHUB_REPOSITORY", ""),
            "github_assignees": _split(env.get("GITHUB_ASSIGNEES")),
            "discord_webhook_url": env.get("DISCORD_WEBHOOK_URL", ""),
            "telegram_bot_token": env.get("TELEGRAM_BOT_TOKEN", ""),
            "telegram_chat_id": env.get("TELEGRAM_CHAT_ID", ""),
        }
        if env.get("SMTP_PORT"):
            values["smtp_port"] = env["SMTP_PORT"]
        if env.get("SLACK_USERNAME"):
            values["slack_username"] = env["SLACK_USERNAME"]
        if env.get("GITHUB_LABELS"):
            values["github_labels"] = _split(env["GITHUB_LABELS"])

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"invalid notifier settings: {e}") from e

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.email_from and self.email_to)

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_webhook)

    @property
    def github_enabled(self) -> bool:
        return bool(self.github_token and "/" in self.github_repository)

    @property
    def discord_enabled(self) -> bool:
        return bool(self.discord_webhook_url)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


class RuntimeSettings(BaseModel):
    """Search client knobs."""

    api_key: str = ""
    base_url: str = "https://api.sam.gov/opportunities/v2/search"
    max_retries: int = 3
    rate_limit_delay: float = 0.0
    cache_path: str = ""
    cache_ttl: float = 3600.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RuntimeSettings":
        env = os.environ if env is None else env
        mapping = {
            "api_key": "SAM_API_KEY",
            "base_url": "SAM_BASE_URL",
            "max_retries": "SAM_MAX_RETRIES",
            "rate_limit_delay": "SAM_RATE_LIMIT_DELAY",
            "cache_path": "SAM_CACHE_PATH",
            "cache_ttl": "SAM_CACHE_TTL",
        }
        values = {field: env[var] for field, var in mapping.items() if env.get(var)}
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError(f"invalid runtime settings: {e}") from e


def validate_environment(env: Optional[Mapping[str, str]] = None) -> List[str]:
    """Return a list of problems with the environment; empty means usable."""
    env = os.environ if env is None else env
    problems = []

    for var in REQUIRED_ENV:
        value = env.get(var, "")
        if not value:
            problems.append(f"missing required environment variable: {var}")
        elif _is_placeholder(value):
            problems.append(f"environment variable {var} appears to contain placeholder data")

    configured = [var for var in OPTIONAL_ENV if env.get(var)]
    if configured:
        logger.info(f"Optional environment variables set: {', '.join(configured)}")
    return problems
