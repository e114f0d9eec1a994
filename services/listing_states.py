"""Lifecycle states of a listing.

Each state knows the exact column values its transition writes, so a listing
row can only be moved through one of these constructors:

- ``Pending``: awaiting checkout; every window field is cleared.
- ``Trial(started, ends)``: free window; the paid window is cleared.
- ``Paid(since, until)``: paid window; the trial window and soft-delete marker
  are cleared.
- ``Expired(since)``: no longer visible; ``expires_at`` marks when the
  retention clock started. Historical window fields are left as they were.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from core.listing_constants import PaymentStatus

_TRIAL_REMINDER_RESET = {
    "trial_reminder_7d_sent_at": None,
    "trial_reminder_1d_sent_at": None,
    "expired_notice_sent_at": None,
}
_PAID_REMINDER_RESET = {
    "paid_reminder_7d_sent_at": None,
    "paid_reminder_1d_sent_at": None,
    "expired_notice_sent_at": None,
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping to the last day of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class Pending:
    status = PaymentStatus.PENDING

    def columns(self) -> Dict[str, Any]:
        return {
            "payment_status": self.status.value,
            "trial_started_at": None,
            "trial_ends_at": None,
            "paid_at": None,
            "expires_at": None,
        }

    def is_active(self, now: datetime) -> bool:
        return False

    @property
    def window_end(self) -> Optional[datetime]:
        return None


@dataclass(frozen=True)
class Trial:
    started: datetime
    ends: datetime
    status = PaymentStatus.TRIAL

    def __post_init__(self) -> None:
        if self.ends <= self.started:
            raise ValueError("trial must end after it starts")

    @classmethod
    def starting(cls, now: datetime, *, months: int) -> "Trial":
        return cls(started=now, ends=add_months(now, months))

    def columns(self) -> Dict[str, Any]:
        return {
            "payment_status": self.status.value,
            "trial_started_at": self.started,
            "trial_ends_at": self.ends,
            "paid_at": None,
            "expires_at": None,
            **_TRIAL_REMINDER_RESET,
        }

    def is_active(self, now: datetime) -> bool:
        return self.ends > now

    @property
    def window_end(self) -> Optional[datetime]:
        return self.ends


@dataclass(frozen=True)
class Paid:
    since: datetime
    until: datetime
    status = PaymentStatus.PAID

    def __post_init__(self) -> None:
        if self.until <= self.since:
            raise ValueError("paid window must end after it starts")

    @classmethod
    def starting(cls, now: datetime, *, days: int) -> "Paid":
        return cls(since=now, until=now + timedelta(days=days))

    def columns(self) -> Dict[str, Any]:
        return {
            "payment_status": self.status.value,
            "paid_at": self.since,
            "expires_at": self.until,
            "trial_started_at": None,
            "trial_ends_at": None,
            "deleted_at": None,
            **_PAID_REMINDER_RESET,
        }

    def is_active(self, now: datetime) -> bool:
        return self.until > now

    @property
    def window_end(self) -> Optional[datetime]:
        return self.until


@dataclass(frozen=True)
class Expired:
    since: datetime
    status = PaymentStatus.EXPIRED

    def columns(self) -> Dict[str, Any]:
        return {"payment_status": self.status.value, "expires_at": self.since}

    def is_active(self, now: datetime) -> bool:
        return False

    @property
    def window_end(self) -> Optional[datetime]:
        return self.since


ListingState = Union[Pending, Trial, Paid, Expired]


def state_of(listing: Any) -> ListingState:
    """
    Decode the stored columns of ``listing`` into a state.

    Rows whose fields do not describe a well-formed window (for example a
    ``paid`` row without ``expires_at``) decode as inactive states.
    """
    status = str(getattr(listing, "payment_status", "") or "").lower()
    trial_started = as_utc(getattr(listing, "trial_started_at", None))
    trial_ends = as_utc(getattr(listing, "trial_ends_at", None))
    paid_at = as_utc(getattr(listing, "paid_at", None))
    expires_at = as_utc(getattr(listing, "expires_at", None))

    if status == PaymentStatus.TRIAL.value and trial_ends is not None:
        started = trial_started if trial_started is not None and trial_started < trial_ends else trial_ends - timedelta(seconds=1)
        return Trial(started=started, ends=trial_ends)
    if status == PaymentStatus.PAID.value and expires_at is not None:
        since = paid_at if paid_at is not None and paid_at < expires_at else expires_at - timedelta(seconds=1)
        return Paid(since=since, until=expires_at)
    if status == PaymentStatus.EXPIRED.value:
        since = expires_at or as_utc(getattr(listing, "updated_at", None)) or datetime.now(timezone.utc)
        return Expired(since=since)
    return Pending()


__all__ = [
    "Expired",
    "ListingState",
    "Paid",
    "Pending",
    "Trial",
    "add_months",
    "as_utc",
    "state_of",
]
