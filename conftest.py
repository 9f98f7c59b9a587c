"""
Shared fakes and factories for the test suite.
"""

import asyncio
import logging
import os
import sys
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest

# Add project root to PYTHONPATH
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from monitor.interfaces import Channel, SearchSource
from monitor.models import Notification, NotificationPolicy, Priority, Query, Record, SearchResponse

logging.basicConfig(level=logging.DEBUG, format="%(asctime)s | %(name)s | %(levelname)s | %(message)s")

Outcome = Union[List[Record], BaseException]


def make_record(notice_id: str, **overrides) -> Record:
    """Create a test Record with sensible defaults."""
    data = {
        "noticeId": notice_id,
        "title": f"Opportunity {notice_id}",
        "solicitationNumber": f"SOL-{notice_id}",
        "fullParentPathName": "DEPARTMENT OF DEFENSE.DARPA",
        "postedDate": "2024-01-15",
        "type": "Solicitation",
        "responseDeadLine": "2024-02-15T17:00:00-05:00",
        "uiLink": f"https://sam.gov/opp/{notice_id}/view",
    }
    data.update(overrides)
    return Record.model_validate(data)


def make_query(
    name: str,
    title: Optional[str] = None,
    priority: Priority = Priority.MEDIUM,
    **kwargs,
) -> Query:
    """Create a test Query whose title parameter defaults to its name."""
    parameters = kwargs.pop("parameters", None) or {"title": title or name}
    notification = kwargs.pop("notification", None) or NotificationPolicy(priority=priority)
    return Query(name=name, parameters=parameters, notification=notification, **kwargs)


class FakeSource(SearchSource):
    """
    Scripted search source keyed by the ``title`` parameter.

    Each script entry is a list of outcomes consumed one per call; the last
    outcome repeats once the others are used up.
    """

    name = "fake"

    def __init__(
        self,
        script: Optional[Dict[str, Sequence[Outcome]]] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delays = delays or {}
        self.calls: List[Dict[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def calls_for(self, title: str) -> int:
        return sum(1 for params in self.calls if params.get("title") == title)

    async def search(self, params: Dict[str, str], timeout: float) -> SearchResponse:
        self.calls.append(dict(params))
        key = params.get("title", "")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(key, 0.0)
            if delay:
                await asyncio.sleep(delay)
            outcomes = self.script.get(key, [[]])
            outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        finally:
            self.in_flight -= 1

        if isinstance(outcome, BaseException):
            raise outcome
        return SearchResponse(total=len(outcome), items=list(outcome))

    async def close(self) -> None:
        self.closed = True


class FakeChannel(Channel):
    """Records every delivery; optionally fails or runs a hook first."""

    def __init__(
        self,
        name: str = "email",
        fail: Optional[BaseException] = None,
        enabled: bool = True,
        on_deliver: Optional[Callable[[Notification], None]] = None,
    ) -> None:
        self._name = name
        self._enabled = enabled
        self.fail = fail
        self.on_deliver = on_deliver
        self.sent: List[Notification] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def deliver(self, notification: Notification) -> None:
        if self.on_deliver is not None:
            self.on_deliver(notification)
        if self.fail is not None:
            raise self.fail
        self.sent.append(notification)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "state" / "monitor.json")
