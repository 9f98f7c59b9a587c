"""
Tests for record fingerprinting.
"""

from conftest import make_record
from monitor.fingerprint import IDENTITY_FIELDS, fingerprint


def test_fingerprint_is_stable():
    record = make_record("N1")
    assert fingerprint(record) == fingerprint(make_record("N1"))
    assert len(fingerprint(record)) == 64


def test_fingerprint_changes_with_identity_fields():
    base = fingerprint(make_record("N1"))
    assert fingerprint(make_record("N1", title="Amended title")) != base
    assert fingerprint(make_record("N1", responseDeadLine="2024-03-01")) != base
    assert fingerprint(make_record("N2")) != base


def test_fingerprint_ignores_non_identity_fields():
    base = fingerprint(make_record("N1"))
    assert fingerprint(make_record("N1", uiLink="https://example.org/other")) == base
    assert fingerprint(make_record("N1", fullParentPathName="OTHER AGENCY")) == base


def test_missing_fields_hash_as_empty():
    assert fingerprint(make_record("N1", naicsCode=None)) == fingerprint(make_record("N1", naicsCode=""))


def test_description_is_truncated():
    """Edits past the first 500 characters of a description don't count as changes."""
    head = "x" * 500
    first = make_record("N1", description=head + " original tail")
    second = make_record("N1", description=head + " edited tail")
    assert fingerprint(first) == fingerprint(second)

    third = make_record("N1", description="y" + head[1:])
    assert fingerprint(third) != fingerprint(first)


def test_field_boundaries_are_unambiguous():
    first = make_record("N1", title="ab", type="c")
    second = make_record("N1", title="a", type="bc")
    assert fingerprint(first) != fingerprint(second)


def test_custom_field_list():
    fields = ("notice_id", "title")
    changed = make_record("N1", responseDeadLine="2030-01-01")
    assert fingerprint(make_record("N1"), fields) == fingerprint(changed, fields)
    assert fingerprint(make_record("N1"), fields) != fingerprint(make_record("N1"), IDENTITY_FIELDS)
