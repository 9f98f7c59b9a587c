"""
Interfaces for the monitor's external collaborators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict

from .models import Notification, SearchResponse


class SearchSource(ABC):
    """Abstract base class for opportunity search backends.

    Implementations raise ``APIError`` for non-success responses so the
    dispatcher can classify them by status code; network problems surface as
    ``aiohttp.ClientError``/``OSError`` and slow calls as ``asyncio.TimeoutError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this source."""
        pass

    @abstractmethod
    async def search(self, params: Dict[str, str], timeout: float) -> SearchResponse:
        """Run one search and return the total plus the items on this page."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass


class Channel(ABC):
    """Abstract base class for notification channels.

    A channel that is not configured reports ``enabled = False`` and its
    ``deliver`` does nothing; the router invokes every registered channel.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this channel."""
        pass

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Deliver a notification; raise on failure."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass
