"""Shared listing plan and lifecycle constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional


class ListingPlan(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class PaymentStatus(str, Enum):
    PENDING = "pending"
    TRIAL = "trial"
    PAID = "paid"
    EXPIRED = "expired"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


PLAN_PHOTO_LIMITS: Dict[ListingPlan, int] = {
    ListingPlan.BASIC: 0,
    ListingPlan.STANDARD: 3,
    ListingPlan.PREMIUM: 8,
}


def parse_plan(value: object) -> Optional[ListingPlan]:
    """Return the plan for ``value`` (case-insensitive) or None when unknown."""
    if isinstance(value, ListingPlan):
        return value
    candidate = str(value or "").strip().lower()
    try:
        return ListingPlan(candidate)
    except ValueError:
        return None


def parse_status(value: object) -> Optional[PaymentStatus]:
    if isinstance(value, PaymentStatus):
        return value
    candidate = str(value or "").strip().lower()
    try:
        return PaymentStatus(candidate)
    except ValueError:
        return None


__all__ = [
    "ListingPlan",
    "PaymentStatus",
    "PLAN_PHOTO_LIMITS",
    "parse_plan",
    "parse_status",
]
