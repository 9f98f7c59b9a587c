"""
Client-side filtering of search results.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from .models import AdvancedFilter, Record

logger = logging.getLogger(__name__)


def _posted_on(record: Record) -> Optional[date]:
    text = (record.posted_date or "").strip()
    for fmt, width in (("%Y-%m-%d", 10), ("%m/%d/%Y", 10)):
        try:
            return datetime.strptime(text[:width], fmt).date()
        except ValueError:
            continue
    return None


def _search_text(record: Record) -> str:
    parts = (record.title, record.description, record.full_parent_path, record.type)
    return " ".join(p for p in parts if p).lower()


def matches(record: Record, advanced: AdvancedFilter, today: Optional[date] = None) -> bool:
    text = _search_text(record)

    if advanced.include and not any(k.lower() in text for k in advanced.include):
        return False
    if advanced.exclude and any(k.lower() in text for k in advanced.exclude):
        return False

    if advanced.max_days_old:
        posted = _posted_on(record)
        # Unknown posting dates are kept
        if posted is not None and ((today or date.today()) - posted).days > advanced.max_days_old:
            return False

    if advanced.naics_codes and (record.naics_code or "") not in advanced.naics_codes:
        return False

    if advanced.set_aside_types:
        wanted = {s.lower() for s in advanced.set_aside_types}
        if (record.type_of_set_aside or "").lower() not in wanted:
            return False

    if advanced.min_value is not None or advanced.max_value is not None:
        amount = record.award.amount if record.award else None
        # Most notices carry no award amount yet; only a known amount can be out of range
        if amount is not None:
            if advanced.min_value is not None and amount < advanced.min_value:
                return False
            if advanced.max_value is not None and amount > advanced.max_value:
                return False

    return True


def apply_filters(
    records: List[Record],
    advanced: AdvancedFilter,
    today: Optional[date] = None,
) -> List[Record]:
    """Return the records that pass every criterion in *advanced*."""
    if advanced.is_empty:
        return list(records)
    kept = [r for r in records if matches(r, advanced, today)]
    logger.debug(f"Advanced filtering: {len(records)} -> {len(kept)} opportunities")
    return kept
