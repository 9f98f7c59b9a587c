"""
Run-wide deadline and cancellation handle.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional


class RunCancelled(Exception):
    """The run was cancelled or its deadline passed."""


def _discard_result(task: asyncio.Future) -> None:
    # Abandoned calls: retrieve the outcome so asyncio doesn't warn about it
    if not task.cancelled():
        task.exception()


class RunContext:
    """
    One deadline plus one cancellation flag shared by every task in a run.

    Network calls derive their timeout from ``remaining()`` and backoff waits
    go through ``sleep()``, so a cancel wakes them immediately.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._deadline = time.monotonic() + timeout if timeout else None
        self._cancel_event: Optional[asyncio.Event] = None
        self._cancelled = False
        self.reason = ""

    def _event(self) -> asyncio.Event:
        # Created lazily so the context can be built outside a running loop
        if self._cancel_event is None:
            self._cancel_event = asyncio.Event()
            if self._cancelled:
                self._cancel_event.set()
        return self._cancel_event

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled or self.expired

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        if self._cancel_event is not None:
            self._cancel_event.set()

    def check(self) -> None:
        """Raise RunCancelled if the run should stop."""
        if self._cancelled:
            raise RunCancelled(self.reason)
        if self.expired:
            raise RunCancelled("deadline exceeded")

    def bound(self, timeout: float) -> float:
        """Clamp *timeout* to whatever is left of the run."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    async def sleep(self, delay: float) -> None:
        """Sleep for *delay* seconds unless the run is cancelled first."""
        self.check()
        wait = self.bound(delay)
        if wait > 0:
            try:
                await asyncio.wait_for(self._event().wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
        if wait < delay:
            # Deadline cut the sleep short
            self.check()
            raise RunCancelled("deadline exceeded")
        self.check()

    async def run(self, coro, timeout: float):
        """Await *coro* bounded by *timeout* and the run; cancellation raises RunCancelled."""
        self.check()
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._event().wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.bound(timeout),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_discard_result)
        self.check()
        raise asyncio.TimeoutError(f"call exceeded {timeout:.1f}s")
