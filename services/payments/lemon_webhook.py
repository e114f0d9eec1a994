"""Reconcile Lemon Squeezy webhook events against listing lifecycle state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from core.listing_constants import ListingPlan
from core.listing_settings import ListingSettings
from core.logging import get_logger
from services.identity import normalize_email
from services.listing_lifecycle import ListingLifecycleService
from services.payments import webhook_audit

logger = get_logger(__name__)

ExtractionPath = Tuple[str, ...]


class WebhookAction(str, Enum):
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_TERMINATED = "payment_terminated"
    IGNORED = "ignored"


EVENT_ACTIONS: Dict[str, WebhookAction] = {
    "order_paid": WebhookAction.PAYMENT_SUCCESS,
    "subscription_payment_success": WebhookAction.PAYMENT_SUCCESS,
    "subscription_cancelled": WebhookAction.PAYMENT_TERMINATED,
    "subscription_expired": WebhookAction.PAYMENT_TERMINATED,
    "order_refunded": WebhookAction.PAYMENT_TERMINATED,
}

# Tried in order; the first non-empty value wins.
EVENT_NAME_PATHS: Sequence[ExtractionPath] = (
    ("meta", "event_name"),
    ("event",),
)
EMAIL_PATHS: Sequence[ExtractionPath] = (
    ("data", "attributes", "checkout_data", "custom", "email"),
    ("data", "attributes", "checkout_data", "email"),
    ("data", "attributes", "user_email"),
    ("data", "attributes", "customer_email"),
)
VARIANT_PATHS: Sequence[ExtractionPath] = (
    ("data", "attributes", "first_order_item", "variant_id"),
    ("data", "attributes", "variant_id"),
    ("data", "attributes", "subscription", "variant_id"),
)
LISTING_ID_PATHS: Sequence[ExtractionPath] = (
    ("meta", "custom_data", "firmId"),
    ("data", "attributes", "checkout_data", "custom", "firmId"),
    ("data", "attributes", "checkout_data", "custom", "firm_id"),
)


def first_present(payload: Mapping[str, Any], paths: Sequence[ExtractionPath]) -> Optional[str]:
    for path in paths:
        node: Any = payload
        for key in path:
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(key)
        if node is None or isinstance(node, (dict, list)):
            continue
        text = str(node).strip()
        if text:
            return text
    return None


def classify_event(event_name: Optional[str]) -> WebhookAction:
    return EVENT_ACTIONS.get(str(event_name or "").strip().lower(), WebhookAction.IGNORED)


def _parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class ListingReference:
    listing_id: Optional[uuid.UUID]
    email: Optional[str]

    @property
    def is_empty(self) -> bool:
        return self.listing_id is None and not self.email


@dataclass(frozen=True)
class WebhookEvent:
    name: str
    action: WebhookAction
    reference: ListingReference
    variant_id: Optional[str]
    dedupe_key: Optional[str]

    def log_context(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "action": self.action.value,
            "listing_id": str(self.reference.listing_id or ""),
            "email": self.reference.email,
            "variant_id": self.variant_id,
            "dedupe_key": self.dedupe_key,
        }


def build_webhook_dedupe_key(event_name: str, payload: Mapping[str, Any]) -> Optional[str]:
    data = payload.get("data")
    if not isinstance(data, Mapping):
        return None
    object_id = str(data.get("id") or "").strip()
    if not object_id:
        return None
    object_type = str(data.get("type") or "").strip() or "object"
    return f"{event_name}:{object_type}:{object_id}"


def parse_webhook_event(payload: Mapping[str, Any]) -> WebhookEvent:
    name = (first_present(payload, EVENT_NAME_PATHS) or "unknown").lower()
    raw_listing_id = first_present(payload, LISTING_ID_PATHS)
    listing_id = _parse_uuid(raw_listing_id)
    if raw_listing_id and listing_id is None:
        logger.warning("Webhook carried a malformed listing id '%s'.", raw_listing_id)
    reference = ListingReference(
        listing_id=listing_id,
        email=normalize_email(first_present(payload, EMAIL_PATHS)) or None,
    )
    return WebhookEvent(
        name=name,
        action=classify_event(name),
        reference=reference,
        variant_id=first_present(payload, VARIANT_PATHS),
        dedupe_key=build_webhook_dedupe_key(name, payload),
    )


@dataclass(frozen=True)
class WebhookOutcome:
    result: str
    event: WebhookEvent
    listing_id: Optional[uuid.UUID] = None


class WebhookReconciler:
    """Applies authenticated webhook payloads to listings, exactly once per dedupe key."""

    def __init__(self, lifecycle: ListingLifecycleService, settings: Optional[ListingSettings] = None) -> None:
        self.lifecycle = lifecycle
        self.settings = settings or lifecycle.settings

    def _plan_for(self, event: WebhookEvent) -> Optional[ListingPlan]:
        plan = self.settings.plan_for_variant(event.variant_id)
        if event.variant_id and plan is None:
            logger.info("Webhook variant %s does not map to a plan; plan left unchanged.", event.variant_id)
        return plan

    def reconcile(self, db: Session, payload: Mapping[str, Any]) -> WebhookOutcome:
        """
        Apply ``payload`` (already signature-verified) and record the outcome.

        Business conditions (unknown event, missing identifier, unknown listing,
        redelivery) are acknowledged; only persistence failures propagate.
        """
        event = parse_webhook_event(payload)
        logger.info("Webhook received: %s", event.name, extra={"webhook": event.log_context()})

        if event.action is WebhookAction.IGNORED:
            return self._finish(db, event, webhook_audit.RESULT_IGNORED_UNSUPPORTED, message="Unsupported event.")
        if event.reference.is_empty:
            return self._finish(db, event, webhook_audit.RESULT_MISSING_IDENTIFIER, message="No listing identifier.")
        if webhook_audit.has_processed_webhook(db, event.dedupe_key):
            return self._finish(db, event, webhook_audit.RESULT_DUPLICATE, message="Event already applied.")

        reference = event.reference
        if event.action is WebhookAction.PAYMENT_SUCCESS:
            listing = self.lifecycle.apply_payment_success(
                db,
                listing_id=reference.listing_id,
                email=reference.email,
                plan=self._plan_for(event),
                commit=False,
            )
            result = webhook_audit.RESULT_PAID_APPLIED
        else:
            listing = self.lifecycle.apply_payment_termination(
                db,
                listing_id=reference.listing_id,
                email=reference.email,
                commit=False,
            )
            result = webhook_audit.RESULT_TERMINATION_APPLIED

        if listing is None:
            logger.warning("Webhook references an unknown listing.", extra={"webhook": event.log_context()})
            return self._finish(db, event, webhook_audit.RESULT_LISTING_NOT_FOUND, message="Listing not found.")
        return self._finish(db, event, result, listing_id=listing.id)

    def _finish(
        self,
        db: Session,
        event: WebhookEvent,
        result: str,
        *,
        listing_id: Optional[uuid.UUID] = None,
        message: Optional[str] = None,
    ) -> WebhookOutcome:
        webhook_audit.append_webhook_event(
            db,
            result=result,
            event_name=event.name,
            dedupe_key=event.dedupe_key,
            listing_id=listing_id or event.reference.listing_id,
            email=event.reference.email,
            message=message,
            context=event.log_context(),
        )
        db.commit()
        return WebhookOutcome(result=result, event=event, listing_id=listing_id)


def record_invalid_payload(db: Session, *, message: str) -> None:
    webhook_audit.append_webhook_event(db, result=webhook_audit.RESULT_PAYLOAD_INVALID, message=message)
    db.commit()


__all__ = [
    "EMAIL_PATHS",
    "EVENT_ACTIONS",
    "LISTING_ID_PATHS",
    "VARIANT_PATHS",
    "ListingReference",
    "WebhookAction",
    "WebhookEvent",
    "WebhookOutcome",
    "WebhookReconciler",
    "build_webhook_dedupe_key",
    "classify_event",
    "first_present",
    "parse_webhook_event",
    "record_invalid_payload",
]
