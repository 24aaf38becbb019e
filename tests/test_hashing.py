"""Unit tests for certificate fingerprint derivation."""

import hashlib
import re
from datetime import datetime, timedelta, timezone

import pytest

from proofchain.exceptions import InvalidRequest
from proofchain.hashing import derive, issued_at_millis
from tests.conftest import FIXED_MILLIS, FIXED_NOW


def test_derive_is_deterministic_for_a_fixed_timestamp():
    assert derive("Alice", "CS101", FIXED_NOW) == derive("Alice", "CS101", FIXED_NOW)


def test_derive_returns_64_lowercase_hex_chars():
    fp = derive("Alice", "CS101", FIXED_NOW)
    assert re.fullmatch(r"[0-9a-f]{64}", fp)


def test_derive_uses_documented_preimage():
    expected = hashlib.sha256(f"Alice-CS101-{FIXED_MILLIS}".encode("utf-8")).hexdigest()
    assert derive("Alice", "CS101", FIXED_NOW) == expected


def test_derive_accepts_millis_and_naive_utc_datetimes():
    naive = datetime(2024, 1, 1)
    assert derive("Alice", "CS101", FIXED_MILLIS) == derive("Alice", "CS101", FIXED_NOW)
    assert derive("Alice", "CS101", naive) == derive("Alice", "CS101", FIXED_NOW)


def test_distinct_instants_give_distinct_fingerprints():
    later = FIXED_NOW + timedelta(milliseconds=1)
    assert derive("Alice", "CS101", FIXED_NOW) != derive("Alice", "CS101", later)


def test_non_ascii_names_are_encoded_as_utf8():
    expected = hashlib.sha256(f"Zoë-Física-{FIXED_MILLIS}".encode("utf-8")).hexdigest()
    assert derive("Zoë", "Física", FIXED_MILLIS) == expected


@pytest.mark.parametrize(
    "student_name, course",
    [("", "CS101"), ("Alice", ""), (None, "CS101"), ("Alice", None), ("   ", "CS101"), ("", "")],
)
def test_derive_rejects_missing_fields(student_name, course):
    with pytest.raises(InvalidRequest, match="Student name and course required"):
        derive(student_name, course, FIXED_NOW)


def test_issued_at_millis_respects_timezone():
    plus_two = datetime(2024, 1, 1, 2, tzinfo=timezone(timedelta(hours=2)))
    assert issued_at_millis(plus_two) == FIXED_MILLIS
