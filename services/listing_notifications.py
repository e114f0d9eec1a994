"""Expiry reminders and deactivation notices sent alongside the sweep."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy.orm import Session

from core.listing_constants import PaymentStatus
from core.listing_settings import ListingSettings
from core.logging import get_logger
from models.listing import Listing
from services import email_service
from services import listing_repository as repo
from services.email_service import Mailer
from services.listing_errors import TransientDependencyError
from services.listing_states import as_utc

logger = get_logger(__name__)

DEACTIVATION_LOOKBACK = timedelta(days=7)


@dataclass(frozen=True)
class ReminderRule:
    kind: str
    status: PaymentStatus
    window_field: str
    marker_field: str
    days_left: int

    def bounds(self, now: datetime) -> tuple[datetime, datetime]:
        return now + timedelta(days=self.days_left - 0.5), now + timedelta(days=self.days_left + 0.5)


REMINDER_RULES: Sequence[ReminderRule] = (
    ReminderRule("trial", PaymentStatus.TRIAL, "trial_ends_at", "trial_reminder_7d_sent_at", 7),
    ReminderRule("trial", PaymentStatus.TRIAL, "trial_ends_at", "trial_reminder_1d_sent_at", 1),
    ReminderRule("subscription", PaymentStatus.PAID, "expires_at", "paid_reminder_7d_sent_at", 7),
    ReminderRule("subscription", PaymentStatus.PAID, "expires_at", "paid_reminder_1d_sent_at", 1),
)


def send_due_reminders(db: Session, mailer: Mailer, *, now: datetime, settings: ListingSettings) -> int:
    """Send each reminder at most once per window; returns the number delivered."""
    pay_url = settings.frontend_url("pay.html")
    delivered = 0
    for rule in REMINDER_RULES:
        start, end = rule.bounds(now)
        candidates = repo.select_window_candidates(
            db,
            status=rule.status,
            window_column=getattr(Listing, rule.window_field),
            marker_column=getattr(Listing, rule.marker_field),
            start=start,
            end=end,
        )
        for listing in candidates:
            try:
                email_service.send_window_reminder(
                    mailer,
                    email=listing.email,
                    kind=rule.kind,
                    days_left=rule.days_left,
                    ends_at=as_utc(getattr(listing, rule.window_field)),
                    pay_url=pay_url,
                )
            except TransientDependencyError:
                logger.warning("Reminder %s failed for listing %s.", rule.marker_field, listing.id)
                continue
            repo.update_listing(db, listing.id, {rule.marker_field: now})
            db.commit()
            delivered += 1
    if delivered:
        logger.info("Sent %d expiry reminder(s).", delivered)
    return delivered


def send_deactivation_notices(db: Session, mailer: Mailer, *, now: datetime, settings: ListingSettings) -> int:
    """Tell owners whose listing recently expired that it is no longer shown."""
    pay_url = settings.frontend_url("pay.html")
    candidates = repo.select_window_candidates(
        db,
        status=PaymentStatus.EXPIRED,
        window_column=Listing.expires_at,
        marker_column=Listing.expired_notice_sent_at,
        start=now - DEACTIVATION_LOOKBACK,
        end=now,
    )
    delivered = 0
    for listing in candidates:
        if listing.deleted_at is None:
            try:
                email_service.send_deactivation_notice(mailer, email=listing.email, pay_url=pay_url)
            except TransientDependencyError:
                logger.warning("Deactivation notice failed for listing %s.", listing.id)
                continue
            delivered += 1
        repo.update_listing(db, listing.id, {"expired_notice_sent_at": now})
        db.commit()
    if delivered:
        logger.info("Sent %d deactivation notice(s).", delivered)
    return delivered


__all__ = ["REMINDER_RULES", "ReminderRule", "send_deactivation_notices", "send_due_reminders"]
