"""Persisted audit trail and idempotency lookups for payment webhooks."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.logging import get_logger
from models.payments import ListingWebhookEvent

logger = get_logger(__name__)

RESULT_PAID_APPLIED = "paid_applied"
RESULT_TERMINATION_APPLIED = "termination_applied"
RESULT_IGNORED_UNSUPPORTED = "ignored_unsupported_event"
RESULT_LISTING_NOT_FOUND = "listing_not_found"
RESULT_MISSING_IDENTIFIER = "missing_identifier"
RESULT_PAYLOAD_INVALID = "payload_invalid"
RESULT_DUPLICATE = "duplicate_skipped"

APPLIED_RESULTS = (RESULT_PAID_APPLIED, RESULT_TERMINATION_APPLIED)


def has_processed_webhook(db: Session, dedupe_key: Optional[str]) -> bool:
    """True when an event with ``dedupe_key`` already changed a listing."""
    if not dedupe_key:
        return False
    stmt = (
        select(ListingWebhookEvent.id)
        .where(ListingWebhookEvent.dedupe_key == dedupe_key, ListingWebhookEvent.result.in_(APPLIED_RESULTS))
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def append_webhook_event(
    db: Session,
    *,
    result: str,
    event_name: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    listing_id: Optional[uuid.UUID] = None,
    email: Optional[str] = None,
    message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> ListingWebhookEvent:
    """Stage an audit row; the caller commits it with the transition it describes."""
    entry = ListingWebhookEvent(
        id=uuid.uuid4(),
        dedupe_key=dedupe_key,
        event_name=event_name,
        result=result,
        listing_id=listing_id,
        email=email,
        message=message,
        context=context or {},
    )
    db.add(entry)
    logger.info(
        "Webhook audit: %s",
        result,
        extra={"webhook": {"event": event_name, "dedupe_key": dedupe_key, "listing_id": str(listing_id or "")}},
    )
    return entry


def read_recent_webhook_events(db: Session, limit: int = 100) -> List[ListingWebhookEvent]:
    stmt = select(ListingWebhookEvent).order_by(ListingWebhookEvent.created_at.desc()).limit(max(1, limit))
    return list(db.execute(stmt).scalars())


__all__ = [
    "APPLIED_RESULTS",
    "RESULT_DUPLICATE",
    "RESULT_IGNORED_UNSUPPORTED",
    "RESULT_LISTING_NOT_FOUND",
    "RESULT_MISSING_IDENTIFIER",
    "RESULT_PAID_APPLIED",
    "RESULT_PAYLOAD_INVALID",
    "RESULT_TERMINATION_APPLIED",
    "append_webhook_event",
    "has_processed_webhook",
    "read_recent_webhook_events",
]
