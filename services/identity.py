"""Canonical forms for listing identity fields (email, phone, country)."""

from __future__ import annotations

import re
from typing import Any, Optional

_COUNTRY_PATTERN = re.compile(r"^[A-Z]{2}$")
_PHONE_STRIP_PATTERN = re.compile(r"[^\d+]")

_INTERNATIONAL_MIN_LENGTH = 9
_INTERNATIONAL_MAX_LENGTH = 16
_LOCAL_DIGITS = 8


def normalize_email(value: Any) -> str:
    """Lower-case and trim ``value``; empty string when absent."""
    return str(value or "").strip().lower()


def normalize_country(value: Any, *, default: str = "MK") -> str:
    """Return an ISO-2 code, or ``default`` when ``value`` is not one."""
    candidate = str(value or "").strip().upper()
    if _COUNTRY_PATTERN.match(candidate):
        return candidate
    return default


def normalize_phone(value: Any, *, local_prefix: str = "+389") -> Optional[str]:
    """
    Normalise ``value`` into E.164.

    Accepted inputs:
    - international numbers starting with ``+`` or ``00`` (9-16 chars incl. ``+``)
    - 8-digit local numbers, or 9 digits with a leading trunk ``0``, which are
      prefixed with ``local_prefix``

    Returns None when the number cannot be normalised.
    """
    phone = _PHONE_STRIP_PATTERN.sub("", str(value or "").strip())
    if phone.startswith("00"):
        phone = "+" + phone[2:]

    if phone.startswith("+"):
        if "+" in phone[1:]:
            return None
        if not _INTERNATIONAL_MIN_LENGTH <= len(phone) <= _INTERNATIONAL_MAX_LENGTH:
            return None
        return phone

    digits = phone.replace("+", "")
    if len(digits) == _LOCAL_DIGITS:
        return f"{local_prefix}{digits}"
    if len(digits) == _LOCAL_DIGITS + 1 and digits.startswith("0"):
        return f"{local_prefix}{digits[1:]}"
    return None


def clean_text(value: Any, *, max_length: Optional[int] = None) -> str:
    text = str(value or "").strip()
    if max_length is not None:
        text = text[:max_length]
    return text


__all__ = ["clean_text", "normalize_country", "normalize_email", "normalize_phone"]
