from __future__ import annotations

import pytest

from services.identity import clean_text, normalize_country, normalize_email, normalize_phone


def test_normalize_email_trims_and_lowercases() -> None:
    assert normalize_email("  Owner@Example.COM ") == "owner@example.com"
    assert normalize_email(None) == ""


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("070 123 456", "+38970123456"),
        ("070-123-456", "+38970123456"),
        ("70123456", "+38970123456"),
        ("+389 70 123 456", "+38970123456"),
        ("00389 70 123 456", "+38970123456"),
        ("+1 (415) 555-0100", "+14155550100"),
    ],
)
def test_normalize_phone_accepts_local_and_international(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", ["", "12345", "+12", "+389+70123456", "1234567890123"])
def test_normalize_phone_rejects_unusable_numbers(raw: str) -> None:
    assert normalize_phone(raw) is None


def test_normalize_phone_uses_configured_prefix() -> None:
    assert normalize_phone("70123456", local_prefix="+381") == "+38170123456"


def test_normalize_country_defaults_unknown_values() -> None:
    assert normalize_country(" rs ") == "RS"
    assert normalize_country("Macedonia") == "MK"
    assert normalize_country(None, default="AL") == "AL"


def test_clean_text_truncates() -> None:
    assert clean_text("  Fixers Ltd  ", max_length=6) == "Fixers"
