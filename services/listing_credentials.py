"""Self-service credentials: data-deletion and pay-now magic links."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from core.listing_constants import ListingPlan, parse_plan
from core.logging import get_logger
from models.listing import Listing
from services import email_service
from services import listing_repository as repo
from services.email_service import Mailer
from services.identity import clean_text, normalize_email
from services.listing_errors import InvalidTokenError, TransientDependencyError, ValidationError
from services.listing_lifecycle import ListingLifecycleService
from services.listing_states import as_utc

logger = get_logger(__name__)

_TOKEN_BYTES = 32
_REASON_MAX_LENGTH = 500
_CLEARED_DELETE_TOKEN = {"delete_token_hash": None, "delete_token_expires": None}
_CLEARED_PAY_TOKEN = {"pay_token_hash": None, "pay_token_expires": None}


def make_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _token_matches(stored_hash: Optional[str], token: str) -> bool:
    if not stored_hash or not token:
        return False
    return hmac.compare_digest(stored_hash.encode("utf-8"), hash_token(token).encode("utf-8"))


class ListingCredentialService:
    """Issues and redeems the single-use tokens mailed to listing owners."""

    def __init__(self, lifecycle: ListingLifecycleService, mailer: Optional[Mailer]) -> None:
        self.lifecycle = lifecycle
        self.mailer = mailer
        self.settings = lifecycle.settings

    def _require_mailer(self) -> Mailer:
        if self.mailer is None:
            raise TransientDependencyError("mailer", "Email service is not configured.")
        return self.mailer

    def _require_email(self, value: Any) -> str:
        email = normalize_email(value)
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required.", field="email")
        return email

    def request_deletion(self, db: Session, email: Any, *, reason: Any = None) -> None:
        """Mail a deletion link when ``email`` owns a listing; silent otherwise."""
        normalized = self._require_email(email)
        mailer = self._require_mailer()
        listing = repo.get_by_email(db, normalized)
        if listing is None:
            logger.info("Deletion requested for unknown email; nothing sent.")
            return

        token = make_token()
        expires = self.lifecycle.now() + timedelta(hours=self.settings.delete_token_hours)
        repo.update_listing(db, listing.id, {"delete_token_hash": hash_token(token), "delete_token_expires": expires})
        db.commit()

        query = urlencode({"email": normalized, "token": token})
        email_service.send_delete_confirmation(
            mailer,
            email=normalized,
            confirm_url=self.settings.frontend_url(f"delete-confirm.html?{query}"),
            ttl_hours=self.settings.delete_token_hours,
            reason=clean_text(reason, max_length=_REASON_MAX_LENGTH) or None,
        )

    def confirm_deletion(self, db: Session, email: Any, token: Any) -> Listing:
        normalized = self._require_email(email)
        raw_token = clean_text(token)
        if not raw_token:
            raise ValidationError("Missing token.", field="token")
        listing = repo.get_by_email(db, normalized)
        expires = as_utc(listing.delete_token_expires) if listing is not None else None
        if (
            listing is None
            or not _token_matches(listing.delete_token_hash, raw_token)
            or expires is None
            or expires <= self.lifecycle.now()
        ):
            raise InvalidTokenError("Invalid or expired link.")
        return self.lifecycle.soft_delete(db, listing, extra=_CLEARED_DELETE_TOKEN)

    def request_pay_link(self, db: Session, email: Any) -> None:
        normalized = self._require_email(email)
        listing = repo.get_by_email(db, normalized)
        if listing is None:
            logger.info("Pay link requested for unknown email; nothing sent.")
            return
        mailer = self._require_mailer()

        token = make_token()
        expires = self.lifecycle.now() + timedelta(minutes=self.settings.pay_token_minutes)
        repo.update_listing(db, listing.id, {"pay_token_hash": hash_token(token), "pay_token_expires": expires})
        db.commit()

        email_service.send_pay_link(
            mailer,
            email=normalized,
            pay_url=self.settings.frontend_url(f"pay.html?{urlencode({'token': token})}"),
            ttl_minutes=self.settings.pay_token_minutes,
        )

    def checkout_with_pay_token(self, db: Session, token: Any, plan: Any) -> str:
        """Redeem a pay token: move the listing to pending on ``plan`` and return a checkout URL."""
        raw_token = clean_text(token)
        if not raw_token:
            raise ValidationError("Missing token.", field="token")
        selected: Optional[ListingPlan] = parse_plan(plan)
        if selected is None:
            raise ValidationError("Invalid plan.", field="plan")

        listing = repo.get_by_pay_token_hash(db, hash_token(raw_token))
        expires = as_utc(listing.pay_token_expires) if listing is not None else None
        if listing is None or expires is None or expires <= self.lifecycle.now():
            raise InvalidTokenError("Invalid or expired link.")
        return self.lifecycle.begin_checkout(db, listing, plan=selected, extra=_CLEARED_PAY_TOKEN)


__all__ = ["ListingCredentialService", "hash_token", "make_token"]
