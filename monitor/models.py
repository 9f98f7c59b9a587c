"""
Core data models for the opportunity monitor.
"""

from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time; every timestamp in the monitor is UTC."""
    return datetime.now(timezone.utc)


def parse_deadline(value: Optional[str]) -> Optional[datetime]:
    """Parse a SAM.gov deadline string, returning None when it can't be read.

    The API mixes plain dates ("2025-03-01") with offsets
    ("2025-03-01T17:00:00-05:00"). Naive values are taken as UTC.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(text[:10]), datetime.min.time())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps, e.g. from a hand-edited state file."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ErrorKind(str, enum.Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    VALIDATION = "validation"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Query parameters are one of these; anything else is rejected at config load.
ParamValue = Union[StrictBool, StrictInt, StrictFloat, str, List[str]]


class Award(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date: Optional[str] = None
    number: Optional[str] = None
    amount: Optional[float] = None


class Record(BaseModel):
    """A single opportunity as returned by the search API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notice_id: str = Field(alias="noticeId")
    title: str = ""
    solicitation_number: Optional[str] = Field(default=None, alias="solicitationNumber")
    full_parent_path: Optional[str] = Field(default=None, alias="fullParentPathName")
    posted_date: str = Field(default="", alias="postedDate")
    type: Optional[str] = None
    response_deadline: Optional[str] = Field(default=None, alias="responseDeadLine")
    ui_link: Optional[str] = Field(default=None, alias="uiLink")
    active: Optional[str] = None
    description: Optional[str] = None
    type_of_set_aside: Optional[str] = Field(default=None, alias="typeOfSetAside")
    naics_code: Optional[str] = Field(default=None, alias="naicsCode")
    award: Optional[Award] = None

    @property
    def deadline(self) -> Optional[datetime]:
        return parse_deadline(self.response_deadline)


class TrackedState(BaseModel):
    """What the monitor remembers about one notice between runs."""

    notice_id: str
    title: str = ""
    first_seen: datetime
    last_seen: datetime
    last_modified: datetime
    fingerprint: str
    deadline: Optional[str] = None
    expired_at: Optional[datetime] = None

    @field_validator("first_seen", "last_seen", "last_modified", "expired_at", mode="after")
    @classmethod
    def _utc_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class QueryMetrics(BaseModel):
    """Rolling execution statistics for a single query."""

    execution_count: int = 0
    error_count: int = 0
    average_duration: float = 0.0
    last_executed: Optional[datetime] = None
    last_record_count: int = 0
    total_records_found: int = 0
    last_error: str = ""

    @field_validator("last_executed", mode="after")
    @classmethod
    def _utc_last_executed(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class NotificationPolicy(BaseModel):
    priority: Priority = Priority.MEDIUM
    recipients: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    digest: bool = True

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value


class AdvancedFilter(BaseModel):
    """Client-side filtering applied after a search returns."""

    model_config = ConfigDict(populate_by_name=True)

    include: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    min_value: Optional[float] = Field(default=None, alias="minValue")
    max_value: Optional[float] = Field(default=None, alias="maxValue")
    max_days_old: int = Field(default=0, alias="maxDaysOld")
    set_aside_types: List[str] = Field(default_factory=list, alias="setAsideTypes")
    naics_codes: List[str] = Field(default_factory=list, alias="naicsCodes")

    @property
    def is_empty(self) -> bool:
        return not (
            self.include
            or self.exclude
            or self.min_value is not None
            or self.max_value is not None
            or self.max_days_old
            or self.set_aside_types
            or self.naics_codes
        )


class Query(BaseModel):
    name: str
    enabled: bool = True
    parameters: Dict[str, ParamValue] = Field(default_factory=dict)
    notification: NotificationPolicy = Field(default_factory=NotificationPolicy)
    advanced: AdvancedFilter = Field(default_factory=AdvancedFilter)


class SearchResponse(BaseModel):
    total: int = 0
    items: List[Record] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Outcome of running one query, successful or not."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    query: Query
    records: List[Record] = Field(default_factory=list)
    total: int = 0
    success: bool = False
    error: Optional[BaseException] = None
    error_kind: Optional[ErrorKind] = None
    duration: float = 0.0
    retry_count: int = 0

    @property
    def query_name(self) -> str:
        return self.query.name


class DiffResult(BaseModel):
    new: List[Record] = Field(default_factory=list)
    updated: List[Record] = Field(default_factory=list)
    existing: List[Record] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new) + len(self.updated) + len(self.existing)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.updated)


class NotificationSummary(BaseModel):
    new_count: int = 0
    updated_count: int = 0
    upcoming_deadlines: int = 0


class Notification(BaseModel):
    query_name: str
    priority: Priority = Priority.MEDIUM
    subject: str = ""
    category: str = "new"
    recipients: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    records: List[Record] = Field(default_factory=list)
    summary: NotificationSummary = Field(default_factory=NotificationSummary)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value


class PendingNotification(BaseModel):
    notification: Notification
    priority: Priority
    created_at: datetime = Field(default_factory=utcnow)


class RunReport(BaseModel):
    """Summary of one monitoring run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    queries_run: int = 0
    queries_succeeded: int = 0
    queries_failed: int = 0
    new_records: int = 0
    updated_records: int = 0
    total_records: int = 0
    expired_records: int = 0
    pruned_records: int = 0
    notifications_sent: int = 0
    errors: List[str] = Field(default_factory=list)
    results: List[QueryResult] = Field(default_factory=list)

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def render(self) -> str:
        lines = [
            "=== Monitoring Run Complete ===",
            f"Duration: {self.duration:.1f}s",
            f"Queries: {self.queries_run} run, {self.queries_succeeded} succeeded, {self.queries_failed} failed",
            f"Opportunities: {self.total_records} total, {self.new_records} new, "
            f"{self.updated_records} updated, {self.expired_records} expired",
        ]
        if self.pruned_records:
            lines.append(f"Pruned: {self.pruned_records} stale entries")
        if self.notifications_sent:
            lines.append(f"Notifications: {self.notifications_sent} dispatched")
        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
            lines.extend(f"  - {err}" for err in self.errors)
        return "\n".join(lines)
