"""
Durable, concurrency-safe record of every notice the monitor has seen.
"""

from __future__ import annotations

import enum
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from .fingerprint import IDENTITY_FIELDS, fingerprint
from .models import QueryMetrics, Record, TrackedState, as_utc, utcnow


logger = logging.getLogger(__name__)


class Observation(str, enum.Enum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class StateFile(BaseModel):
    """On-disk layout of the state file."""

    opportunities: Dict[str, TrackedState] = Field(default_factory=dict)
    last_run: Optional[datetime] = None
    run_count: int = 0
    query_metrics: Dict[str, QueryMetrics] = Field(default_factory=dict)

    @field_validator("last_run", mode="after")
    @classmethod
    def _utc_last_run(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class StateStats(BaseModel):
    total_opportunities: int = 0
    expired_opportunities: int = 0
    opportunities_last_week: int = 0
    opportunities_last_month: int = 0
    last_run: Optional[datetime] = None
    run_count: int = 0
    total_queries: int = 0
    query_success_rate: float = 0.0


class ReadWriteLock:
    """Any number of readers, or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class StateStore:
    """Maps notice IDs to their TrackedState.

    Every mutation holds the write lock only for the single entry it touches;
    nothing performs I/O under the lock except ``save``, which writes the
    snapshot to a temp file and renames it once the lock is released.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        identity_fields: Sequence[str] = IDENTITY_FIELDS,
        rediscover_expired: bool = True,
    ) -> None:
        self.path = Path(path) if path else None
        self.identity_fields = tuple(identity_fields)
        self.rediscover_expired = rediscover_expired
        self._doc = StateFile()
        self._lock = ReadWriteLock()
        self._save_lock = threading.Lock()
        self._dirty = False

    # ---------------------------------------------- #
    # Persistence
    @classmethod
    def load(cls, path: Optional[str], **kwargs) -> "StateStore":
        """Load state from *path*; a missing or corrupt file yields an empty store."""
        store = cls(path, **kwargs)
        if store.path is None:
            return store

        if store.path.parent and not store.path.parent.exists():
            store.path.parent.mkdir(parents=True, exist_ok=True)

        try:
            raw = store.path.read_bytes()
        except FileNotFoundError:
            logger.info(f"No state file at {store.path}, starting fresh")
            return store
        except OSError as e:
            logger.warning(f"Unreadable state file {store.path}, starting fresh: {e}")
            return store

        try:
            store._doc = StateFile.model_validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Corrupt state file {store.path}, starting fresh: {e}")
            store._doc = StateFile()
            return store

        logger.info(f"Loaded state with {len(store._doc.opportunities)} tracked opportunities")
        return store

    def save(self, path: Optional[str] = None) -> bool:
        """Atomically persist the store. Returns False when there was nothing to write."""
        target = Path(path) if path else self.path
        if target is None:
            return False

        with self._save_lock:
            with self._lock.write():
                if not self._dirty and target == self.path:
                    return False
                payload = self._doc.model_dump_json(indent=2)
                target.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                        fh.flush()
                        os.fsync(fh.fileno())
                except BaseException:
                    os.unlink(tmp_name)
                    raise
                self._dirty = False

            try:
                os.replace(tmp_name, target)
            except OSError:
                os.unlink(tmp_name)
                with self._lock.write():
                    self._dirty = True
                raise

        logger.debug(f"State saved to {target}")
        return True

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ---------------------------------------------- #
    # Record tracking
    def get(self, notice_id: str) -> Optional[TrackedState]:
        with self._lock.read():
            entry = self._doc.opportunities.get(notice_id)
            return entry.model_copy() if entry is not None else None

    def observe(self, record: Record, now: Optional[datetime] = None) -> Observation:
        """Record a sighting of *record* and report how it compares to what was stored."""
        now = now or utcnow()
        digest = fingerprint(record, self.identity_fields)

        with self._lock.write():
            existing = self._doc.opportunities.get(record.notice_id)
            rediscovered = (
                existing is not None
                and existing.expired_at is not None
                and self.rediscover_expired
            )
            if existing is None or rediscovered:
                self._doc.opportunities[record.notice_id] = TrackedState(
                    notice_id=record.notice_id,
                    title=record.title,
                    first_seen=now,
                    last_seen=now,
                    last_modified=now,
                    fingerprint=digest,
                    deadline=record.response_deadline,
                )
                self._dirty = True
                return Observation.NEW

            existing.last_seen = now
            existing.expired_at = None
            self._dirty = True
            if existing.fingerprint == digest:
                return Observation.UNCHANGED

            existing.fingerprint = digest
            existing.last_modified = now
            existing.title = record.title
            existing.deadline = record.response_deadline
            return Observation.UPDATED

    def upsert(self, record: Record, now: Optional[datetime] = None) -> bool:
        """Insert or refresh *record*; True when this call created the entry."""
        return self.observe(record, now) is Observation.NEW

    def prune(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """Drop entries not seen within *max_age*."""
        cutoff = (now or utcnow()) - max_age
        with self._lock.write():
            stale = [nid for nid, e in self._doc.opportunities.items() if e.last_seen < cutoff]
            for notice_id in stale:
                del self._doc.opportunities[notice_id]
            if stale:
                self._dirty = True
        if stale:
            logger.info(f"Pruned {len(stale)} opportunities not seen since {cutoff.isoformat()}")
        return len(stale)

    def mark_expired(self, notice_ids: Iterable[str], now: Optional[datetime] = None) -> int:
        """Flag entries as expired so a later sighting is treated as a rediscovery."""
        now = now or utcnow()
        marked = 0
        for notice_id in notice_ids:
            with self._lock.write():
                entry = self._doc.opportunities.get(notice_id)
                if entry is None or entry.expired_at is not None:
                    continue
                entry.expired_at = now
                self._dirty = True
                marked += 1
        return marked

    def entries(self) -> List[TrackedState]:
        """Snapshot copy of every tracked entry."""
        with self._lock.read():
            return [e.model_copy() for e in self._doc.opportunities.values()]

    def ids(self) -> List[str]:
        with self._lock.read():
            return list(self._doc.opportunities)

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._doc.opportunities)

    def __contains__(self, notice_id: object) -> bool:
        with self._lock.read():
            return notice_id in self._doc.opportunities

    # ---------------------------------------------- #
    # Run bookkeeping
    @property
    def last_run(self) -> Optional[datetime]:
        with self._lock.read():
            return self._doc.last_run

    @property
    def run_count(self) -> int:
        with self._lock.read():
            return self._doc.run_count

    def set_last_run(self, when: Optional[datetime] = None) -> None:
        with self._lock.write():
            self._doc.last_run = when or utcnow()
            self._doc.run_count += 1
            self._dirty = True

    def update_query_metrics(
        self,
        query_name: str,
        duration: float,
        record_count: int,
        error: Optional[BaseException] = None,
    ) -> None:
        with self._lock.write():
            metrics = self._doc.query_metrics.setdefault(query_name, QueryMetrics())
            metrics.last_executed = utcnow()
            metrics.execution_count += 1
            metrics.last_record_count = record_count
            metrics.total_records_found += record_count
            # Rolling average over every execution so far
            n = metrics.execution_count
            metrics.average_duration = ((n - 1) * metrics.average_duration + duration) / n
            if error is not None:
                metrics.error_count += 1
                metrics.last_error = str(error)
            else:
                metrics.last_error = ""
            self._dirty = True

    def query_metrics(self, query_name: str) -> Optional[QueryMetrics]:
        with self._lock.read():
            metrics = self._doc.query_metrics.get(query_name)
            return metrics.model_copy() if metrics is not None else None

    def stats(self, now: Optional[datetime] = None) -> StateStats:
        now = now or utcnow()
        with self._lock.read():
            stats = StateStats(
                total_opportunities=len(self._doc.opportunities),
                last_run=self._doc.last_run,
                run_count=self._doc.run_count,
                total_queries=len(self._doc.query_metrics),
            )
            for entry in self._doc.opportunities.values():
                age = now - entry.first_seen
                if age <= timedelta(days=7):
                    stats.opportunities_last_week += 1
                if age <= timedelta(days=30):
                    stats.opportunities_last_month += 1
                if entry.expired_at is not None:
                    stats.expired_opportunities += 1

            executions = sum(m.execution_count for m in self._doc.query_metrics.values())
            errors = sum(m.error_count for m in self._doc.query_metrics.values())
        if executions:
            stats.query_success_rate = (executions - errors) / executions
        return stats

    def export_json(self) -> str:
        with self._lock.read():
            return self._doc.model_dump_json(indent=2)
