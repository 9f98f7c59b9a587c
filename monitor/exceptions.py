"""
Exception types raised by the monitor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from .models import QueryResult, RunReport


class MonitorError(Exception):
    """Base class for monitor errors."""


class ConfigError(MonitorError):
    """Configuration file or environment is unusable."""


class APIError(MonitorError):
    """Non-success response from the search API (or a webhook)."""

    def __init__(self, status_code: int, message: str = "", details: str = "") -> None:
        self.status_code = status_code
        self.message = message or f"API returned status {status_code}"
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"APIError(status_code={self.status_code}, message={self.message!r})"


class CircuitOpenError(MonitorError):
    """The circuit breaker is rejecting calls."""


class QueryDisabledError(MonitorError):
    """The query is disabled in configuration."""

    def __init__(self, query_name: str) -> None:
        self.query_name = query_name
        super().__init__(f"query disabled: {query_name}")


class NotificationValidationError(MonitorError, ValueError):
    """Notification is missing required content."""


class MultiChannelError(MonitorError):
    """One or more channels failed to deliver."""

    def __init__(self, errors: Sequence[Tuple[str, BaseException]], handled: int = 0) -> None:
        self.errors: List[Tuple[str, BaseException]] = list(errors)
        # Notifications the raising call still sent or queued
        self.handled = handled
        super().__init__(self._format())

    def _format(self) -> str:
        if len(self.errors) == 1:
            channel, err = self.errors[0]
            return f"{channel}: {err}"
        parts = "; ".join(f"{channel}: {err}" for channel, err in self.errors)
        return f"multiple notification errors: {parts}"

    @property
    def channels(self) -> List[str]:
        return [channel for channel, _ in self.errors]


class FailureThresholdExceeded(MonitorError):
    """Too many queries failed for the run's results to be trusted."""

    def __init__(
        self,
        ratio: float,
        threshold: float,
        results: Optional[List["QueryResult"]] = None,
    ) -> None:
        self.ratio = ratio
        self.threshold = threshold
        self.results = results or []
        # Filled in by the run that gave up, once its report is complete
        self.report: Optional["RunReport"] = None
        super().__init__(
            f"failure rate {ratio * 100:.1f}% exceeds threshold {threshold * 100:.1f}%"
        )
