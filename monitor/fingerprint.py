"""
Content hashing for cheap change detection.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from .models import Record

# Order matters: the hash input is built in exactly this sequence.
IDENTITY_FIELDS: Sequence[str] = (
    "notice_id",
    "title",
    "posted_date",
    "type",
    "type_of_set_aside",
    "naics_code",
    "response_deadline",
    "description",
)

# Fields that can grow without bound are cut so trailing edits don't churn the hash.
TRUNCATED_FIELDS = {"description": 500}

FIELD_SEPARATOR = "\x1f"


def _field_text(record: Record, field: str) -> str:
    value = getattr(record, field, None)
    if value is None:
        return ""
    text = str(value)
    limit = TRUNCATED_FIELDS.get(field)
    if limit is not None:
        text = text.strip()[:limit]
    return text


def fingerprint(record: Record, fields: Sequence[str] = IDENTITY_FIELDS) -> str:
    """Return the SHA-256 hex digest of a record's identity fields."""
    content = FIELD_SEPARATOR.join(_field_text(record, field) for field in fields)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
