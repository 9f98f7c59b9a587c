"""
Classifies fetched records against the state store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import AbstractSet, Iterable, List, Optional

from .models import DiffResult, Record, TrackedState, utcnow
from .state import Observation, StateStore

logger = logging.getLogger(__name__)

REPORT_SAMPLE_SIZE = 5


class Differ:
    """Splits a batch of records into new, updated and existing ones."""

    name = "Differ"

    def diff(
        self,
        records: Iterable[Record],
        store: StateStore,
        now: Optional[datetime] = None,
    ) -> DiffResult:
        """
        Classify each record and update its tracked state in the same step.

        Each record is handled independently, so the order of *records* has
        no effect on which bucket any of them lands in.
        """
        now = now or utcnow()
        result = DiffResult()

        for record in records:
            observation = store.observe(record, now)
            if observation is Observation.NEW:
                logger.debug(f"New opportunity detected: {record.notice_id}")
                result.new.append(record)
            elif observation is Observation.UPDATED:
                logger.debug(f"Opportunity changed: {record.notice_id}")
                result.updated.append(record)
            else:
                result.existing.append(record)

        return result

    def find_expired(
        self,
        current_ids: AbstractSet[str],
        store: StateStore,
        max_age: timedelta,
        now: Optional[datetime] = None,
    ) -> List[TrackedState]:
        """Entries missing from the current batch and not seen within *max_age*."""
        cutoff = (now or utcnow()) - max_age
        return [
            entry
            for entry in store.entries()
            if entry.notice_id not in current_ids
            and entry.expired_at is None
            and entry.last_seen < cutoff
        ]

    def diff_report(self, diff: DiffResult, query_name: str) -> str:
        lines = [
            f"Query: {query_name}",
            f"Total: {diff.total} | New: {len(diff.new)} | "
            f"Updated: {len(diff.updated)} | Existing: {len(diff.existing)}",
        ]
        for label, records in (("New", diff.new), ("Updated", diff.updated)):
            if not records:
                continue
            lines.append(f"{label} opportunities:")
            for record in records[:REPORT_SAMPLE_SIZE]:
                lines.append(f"  - {record.title} ({record.notice_id})")
            if len(records) > REPORT_SAMPLE_SIZE:
                lines.append(f"  ... and {len(records) - REPORT_SAMPLE_SIZE} more")
        return "\n".join(lines)
