"""Lifecycle engine for directory listings.

Owns every transition a listing can go through:

- ``register``: new identity -> trial; inactive identity -> pending + checkout;
  active identity -> rejected without mutation.
- ``apply_payment_success`` / ``apply_payment_termination``: webhook driven.
- admin overrides (patch, expire, mark-paid, delete) and the self-service
  transitions (pay-now checkout, soft delete).

All window changes are expressed through the variants in
``services.listing_states`` and written with a single UPDATE statement.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.listing_constants import PLAN_PHOTO_LIMITS, ListingPlan, PaymentStatus, parse_plan, parse_status
from core.listing_settings import ListingSettings, get_listing_settings
from core.logging import get_logger
from models.listing import Listing
from services import listing_repository as repo
from services.identity import clean_text, normalize_country, normalize_email, normalize_phone
from services.listing_errors import (
    AlreadyActiveError,
    ListingNotFoundError,
    LocationUnresolvedError,
    ValidationError,
)
from services.listing_repository import GeoPoint
from services.listing_states import (
    Expired,
    ListingState,
    Paid,
    Pending,
    Trial,
    add_months,
    as_utc,
    state_of,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]

ADMIN_PATCHABLE_FIELDS = frozenset(
    {
        "name",
        "phone",
        "address",
        "city",
        "category",
        "plan",
        "country",
        "payment_status",
        "expires_at",
        "trial_ends_at",
    }
)
MARK_PAID_MIN_DAYS = 1
MARK_PAID_MAX_DAYS = 3650

_TEXT_LIMITS = {"name": 255, "address": 512, "city": 128, "category": 128}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Geocoder(Protocol):
    def geocode(self, *, address: str, city: str, country: str) -> Optional[GeoPoint]:
        ...


class MediaStore(Protocol):
    def upload(self, upload: "MediaUpload", *, folder: str) -> str:
        ...


class CheckoutGateway(Protocol):
    def create_checkout(self, *, plan: ListingPlan, email: str, listing_id: uuid.UUID) -> str:
        ...


@dataclass(frozen=True)
class MediaUpload:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class RegistrationSubmission:
    email: Any
    name: Any
    phone: Any
    address: Any
    city: Any
    category: Any
    plan: Any = ListingPlan.BASIC.value
    country: Any = None
    logo: Optional[MediaUpload] = None
    photos: Sequence[MediaUpload] = field(default_factory=list)


@dataclass(frozen=True)
class NormalizedProfile:
    email: str
    name: str
    phone: str
    address: str
    city: str
    category: str
    plan: ListingPlan
    country: str

    def columns(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "category": self.category,
            "plan": self.plan.value,
            "country": self.country,
        }


@dataclass(frozen=True)
class NewTrial:
    listing: Listing
    redirect_url: str


@dataclass(frozen=True)
class ReCheckout:
    listing: Listing
    checkout_url: str


RegistrationOutcome = Union[NewTrial, ReCheckout]


def _media_columns_for_plan(plan: ListingPlan, logo_url: Optional[str], photos: Sequence[str]) -> Dict[str, Any]:
    limit = PLAN_PHOTO_LIMITS.get(plan, 0)
    if limit <= 0:
        return {"logo_url": None, "photos": []}
    return {"logo_url": logo_url, "photos": list(photos)[:limit]}


def _parse_timestamp(value: Any, *, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be an ISO-8601 timestamp.", field=field_name) from exc
    return as_utc(parsed)


class ListingLifecycleService:
    """Transition engine; collaborators are injected so tests can supply fakes."""

    def __init__(
        self,
        *,
        geocoder: Geocoder,
        media_store: Optional[MediaStore],
        checkout_gateway: CheckoutGateway,
        settings: Optional[ListingSettings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.geocoder = geocoder
        self.media_store = media_store
        self.checkout_gateway = checkout_gateway
        self.settings = settings or get_listing_settings()
        self.clock = clock

    # ------------------------------------------------------------------ helpers

    def now(self) -> datetime:
        return as_utc(self.clock())  # type: ignore[return-value]

    def normalize_submission(self, submission: RegistrationSubmission) -> NormalizedProfile:
        email = normalize_email(submission.email)
        if not email or "@" not in email or len(email) > 320:
            raise ValidationError("A valid email address is required.", field="email")

        texts: Dict[str, str] = {}
        for name, limit in _TEXT_LIMITS.items():
            value = clean_text(getattr(submission, name), max_length=limit)
            if not value:
                raise ValidationError(f"{name} is required.", field=name)
            texts[name] = value

        if not clean_text(submission.phone):
            raise ValidationError("phone is required.", field="phone")
        phone = normalize_phone(submission.phone, local_prefix=self.settings.default_phone_prefix)
        if phone is None:
            raise ValidationError("Phone number could not be normalised.", field="phone")

        plan = parse_plan(submission.plan or ListingPlan.BASIC.value)
        if plan is None:
            raise ValidationError("Unknown plan.", field="plan")

        return NormalizedProfile(
            email=email,
            phone=phone,
            plan=plan,
            country=normalize_country(submission.country, default=self.settings.default_country),
            **texts,
        )

    def _reject_if_active(self, listing: Listing, now: datetime) -> None:
        state = state_of(listing)
        if state.is_active(now):
            raise AlreadyActiveError(
                "A listing for this email is already active.",
                status=state.status.value,
                active_until=state.window_end,
            )

    def _upload_media(self, profile: NormalizedProfile, submission: RegistrationSubmission) -> Tuple[Optional[str], List[str]]:
        limit = PLAN_PHOTO_LIMITS.get(profile.plan, 0)
        if limit <= 0 or self.media_store is None:
            return None, []
        uploads = [item for item in submission.photos if item.content][:limit]
        for item in [submission.logo, *uploads]:
            if item is not None and item.content and not item.content_type.startswith("image/"):
                raise ValidationError("Only image uploads are accepted.", field="photos")
        folder = "listings/" + hashlib.sha256(profile.email.encode("utf-8")).hexdigest()[:16]
        logo_url = None
        if submission.logo is not None and submission.logo.content:
            logo_url = self.media_store.upload(submission.logo, folder=folder)
        photo_urls = [self.media_store.upload(item, folder=folder) for item in uploads]
        return logo_url, photo_urls

    def _trial_redirect(self, listing: Listing) -> str:
        return f"{self.settings.frontend_success_url}?status=trial&firmId={listing.id}"

    def _write_state(self, db: Session, listing: Listing, state: ListingState, extra: Optional[Mapping[str, Any]] = None) -> Listing:
        values = state.columns()
        if extra:
            values.update(extra)
        repo.update_listing(db, listing.id, values)
        refreshed = repo.get_by_id(db, listing.id)
        return refreshed if refreshed is not None else listing

    # ------------------------------------------------------------- registration

    def register(self, db: Session, submission: RegistrationSubmission) -> RegistrationOutcome:
        """Create a trial listing, or move an inactive one back to pending with a checkout."""
        profile = self.normalize_submission(submission)
        now = self.now()

        existing = repo.get_by_email(db, profile.email)
        if existing is not None:
            self._reject_if_active(existing, now)

        point = self.geocoder.geocode(address=profile.address, city=profile.city, country=profile.country)
        if point is None:
            raise LocationUnresolvedError("The address could not be located. Please check address and city.")

        logo_url, photo_urls = self._upload_media(profile, submission)

        if existing is None:
            trial = Trial.starting(now, months=self.settings.trial_months)
            listing = Listing(
                id=uuid.uuid4(),
                email=profile.email,
                latitude=point.latitude,
                longitude=point.longitude,
                **profile.columns(),
                **_media_columns_for_plan(profile.plan, logo_url, photo_urls),
                **trial.columns(),
            )
            try:
                repo.insert_listing(db, listing)
                db.commit()
            except IntegrityError:
                # A concurrent registration claimed the email first.
                db.rollback()
                existing = repo.get_by_email(db, profile.email)
                if existing is None:
                    raise
                self._reject_if_active(existing, now)
            else:
                logger.info("Listing %s registered with trial until %s.", listing.id, trial.ends.isoformat())
                return NewTrial(listing=listing, redirect_url=self._trial_redirect(listing))

        return self._recheckout(db, existing, profile, point, logo_url, photo_urls, now)

    def _recheckout(
        self,
        db: Session,
        existing: Listing,
        profile: NormalizedProfile,
        point: GeoPoint,
        logo_url: Optional[str],
        photo_urls: List[str],
        now: datetime,
    ) -> ReCheckout:
        if logo_url is None and not photo_urls:
            media = _media_columns_for_plan(profile.plan, existing.logo_url, existing.photos or [])
        else:
            media = _media_columns_for_plan(profile.plan, logo_url, photo_urls)
        values: Dict[str, Any] = {
            **profile.columns(),
            **media,
            "latitude": point.latitude,
            "longitude": point.longitude,
            **Pending().columns(),
        }
        if not repo.update_listing_if_inactive(db, existing.id, values, now=now):
            db.rollback()
            current = repo.get_by_id(db, existing.id)
            if current is not None:
                self._reject_if_active(current, now)
            raise ListingNotFoundError("Listing disappeared during registration.")
        db.commit()
        listing = repo.get_by_id(db, existing.id) or existing
        checkout_url = self.checkout_gateway.create_checkout(plan=profile.plan, email=profile.email, listing_id=listing.id)
        logger.info("Listing %s moved to pending; checkout issued for plan %s.", listing.id, profile.plan.value)
        return ReCheckout(listing=listing, checkout_url=checkout_url)

    # ------------------------------------------------------------------ queries

    def status(self, db: Session, email: Any) -> Listing:
        listing = repo.get_by_email(db, normalize_email(email))
        if listing is None:
            raise ListingNotFoundError("No listing found for this email.")
        return listing

    def list_public(
        self,
        db: Session,
        *,
        country: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> List[Tuple[Listing, Optional[float]]]:
        """Active listings, optionally scoped to a country and a radius around a point."""
        now = self.now()
        scoped_country = None
        if country and str(country).strip():
            scoped_country = normalize_country(country, default=self.settings.default_country)
        if latitude is None or longitude is None:
            if latitude is not None or longitude is not None:
                raise ValidationError("lat and lng must be supplied together.", field="lat")
            listings = repo.list_active(
                db, now=now, country=scoped_country, default_country=self.settings.default_country
            )
            return [(listing, None) for listing in listings]
        if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
            raise ValidationError("Coordinates are out of range.", field="lat")
        radius = self.clamp_radius(radius_km)
        matches = repo.list_active_near(
            db,
            now=now,
            origin=GeoPoint(latitude, longitude),
            radius_km=radius,
            country=scoped_country,
            default_country=self.settings.default_country,
        )
        return [(listing, distance) for listing, distance in matches]

    def clamp_radius(self, radius_km: Optional[float]) -> float:
        if radius_km is None:
            return self.settings.near_default_radius_km
        return min(max(float(radius_km), self.settings.near_min_radius_km), self.settings.near_max_radius_km)

    # ----------------------------------------------------------------- webhooks

    def apply_payment_success(
        self,
        db: Session,
        *,
        listing_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
        plan: Optional[ListingPlan] = None,
        commit: bool = True,
    ) -> Optional[Listing]:
        """Open a paid window of ``paid_period_days`` from now; None when unresolved."""
        listing = repo.find_by_reference(db, listing_id=listing_id, email=normalize_email(email) or None)
        if listing is None:
            logger.warning("Payment success for unknown listing (id=%s, email=%s).", listing_id, email)
            return None
        extra: Dict[str, Any] = {}
        if plan is not None:
            extra["plan"] = plan.value
            if PLAN_PHOTO_LIMITS.get(plan, 0) <= 0:
                extra.update(_media_columns_for_plan(plan, None, []))
        paid = Paid.starting(self.now(), days=self.settings.paid_period_days)
        updated = self._write_state(db, listing, paid, extra)
        if commit:
            db.commit()
        logger.info("Listing %s paid until %s.", listing.id, paid.until.isoformat())
        return updated

    def apply_payment_termination(
        self,
        db: Session,
        *,
        listing_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[Listing]:
        listing = repo.find_by_reference(db, listing_id=listing_id, email=normalize_email(email) or None)
        if listing is None:
            logger.warning("Payment termination for unknown listing (id=%s, email=%s).", listing_id, email)
            return None
        updated = self._write_state(db, listing, Expired(since=self.now()))
        if commit:
            db.commit()
        logger.info("Listing %s expired by payment termination.", listing.id)
        return updated

    # -------------------------------------------------------------------- admin

    def _require(self, db: Session, listing_id: uuid.UUID) -> Listing:
        listing = repo.get_by_id(db, listing_id)
        if listing is None:
            raise ListingNotFoundError("Listing not found.")
        return listing

    def _state_for_override(
        self,
        listing: Listing,
        status: PaymentStatus,
        *,
        expires_at: Optional[datetime],
        trial_ends_at: Optional[datetime],
    ) -> ListingState:
        now = self.now()
        current = state_of(listing)
        if status is PaymentStatus.PENDING:
            return Pending()
        if status is PaymentStatus.EXPIRED:
            return Expired(since=expires_at or now)
        if status is PaymentStatus.TRIAL:
            ends = trial_ends_at or (current.ends if isinstance(current, Trial) else add_months(now, self.settings.trial_months))
            started = current.started if isinstance(current, Trial) and current.started < ends else min(now, ends - timedelta(seconds=1))
            return Trial(started=started, ends=ends)
        until = expires_at or (
            current.until if isinstance(current, Paid) else now + timedelta(days=self.settings.paid_period_days)
        )
        since = current.since if isinstance(current, Paid) and current.since < until else min(now, until - timedelta(seconds=1))
        return Paid(since=since, until=until)

    def admin_patch(self, db: Session, listing_id: uuid.UUID, patch: Mapping[str, Any]) -> Listing:
        """Apply an administrative patch with the same validation as registration."""
        unknown = set(patch) - ADMIN_PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be patched: {', '.join(sorted(unknown))}.")
        listing = self._require(db, listing_id)
        values: Dict[str, Any] = {}

        for name, limit in _TEXT_LIMITS.items():
            if name in patch:
                value = clean_text(patch[name], max_length=limit)
                if not value:
                    raise ValidationError(f"{name} cannot be empty.", field=name)
                values[name] = value
        if "phone" in patch:
            phone = normalize_phone(patch["phone"], local_prefix=self.settings.default_phone_prefix)
            if phone is None:
                raise ValidationError("Phone number could not be normalised.", field="phone")
            values["phone"] = phone
        if "country" in patch:
            values["country"] = normalize_country(patch["country"], default=self.settings.default_country)
        if "plan" in patch:
            plan = parse_plan(patch["plan"])
            if plan is None:
                raise ValidationError("Unknown plan.", field="plan")
            values["plan"] = plan.value
            values.update(_media_columns_for_plan(plan, listing.logo_url, listing.photos or []))

        expires_at = _parse_timestamp(patch.get("expires_at"), field_name="expires_at")
        trial_ends_at = _parse_timestamp(patch.get("trial_ends_at"), field_name="trial_ends_at")
        state: Optional[ListingState] = None
        if "payment_status" in patch:
            status = parse_status(patch["payment_status"])
            if status is None:
                raise ValidationError("Unknown payment status.", field="payment_status")
            state = self._state_for_override(listing, status, expires_at=expires_at, trial_ends_at=trial_ends_at)
        elif expires_at is not None or trial_ends_at is not None:
            current = state_of(listing)
            if trial_ends_at is not None and not isinstance(current, Trial):
                raise ValidationError("trial_ends_at only applies to trial listings.", field="trial_ends_at")
            if expires_at is not None and not isinstance(current, (Paid, Expired)):
                raise ValidationError("expires_at only applies to paid or expired listings.", field="expires_at")
            state = self._state_for_override(listing, current.status, expires_at=expires_at, trial_ends_at=trial_ends_at)

        if state is not None:
            values.update(state.columns())
        if values:
            repo.update_listing(db, listing.id, values)
            db.commit()
            logger.info("Admin patched listing %s (%s).", listing.id, ", ".join(sorted(patch)))
        return self._require(db, listing.id)

    def admin_expire(self, db: Session, listing_id: uuid.UUID) -> Listing:
        listing = self._write_state(db, self._require(db, listing_id), Expired(since=self.now()))
        db.commit()
        return listing

    def admin_mark_paid(self, db: Session, listing_id: uuid.UUID, *, days: Optional[int] = None) -> Listing:
        period = days if days is not None else self.settings.paid_period_days
        period = min(max(int(period), MARK_PAID_MIN_DAYS), MARK_PAID_MAX_DAYS)
        listing = self._write_state(db, self._require(db, listing_id), Paid.starting(self.now(), days=period))
        db.commit()
        return listing

    def admin_delete(self, db: Session, listing_id: uuid.UUID) -> None:
        if not repo.delete_listing(db, listing_id):
            raise ListingNotFoundError("Listing not found.")
        db.commit()
        logger.info("Admin deleted listing %s.", listing_id)

    # ------------------------------------------------------------ self-service

    def begin_checkout(self, db: Session, listing: Listing, *, plan: ListingPlan, extra: Optional[Mapping[str, Any]] = None) -> str:
        """Move an inactive listing to pending on ``plan`` and return a checkout URL."""
        now = self.now()
        self._reject_if_active(listing, now)
        values: Dict[str, Any] = {"plan": plan.value, **Pending().columns()}
        values.update(_media_columns_for_plan(plan, listing.logo_url, listing.photos or []))
        if extra:
            values.update(extra)
        if not repo.update_listing_if_inactive(db, listing.id, values, now=now):
            db.rollback()
            current = self._require(db, listing.id)
            self._reject_if_active(current, now)
        db.commit()
        return self.checkout_gateway.create_checkout(plan=plan, email=listing.email, listing_id=listing.id)

    def soft_delete(self, db: Session, listing: Listing, *, extra: Optional[Mapping[str, Any]] = None) -> Listing:
        now = self.now()
        values: Dict[str, Any] = {"deleted_at": now}
        if extra:
            values.update(extra)
        updated = self._write_state(db, listing, Expired(since=now), values)
        db.commit()
        logger.info("Listing %s soft-deleted by its owner.", listing.id)
        return updated


__all__ = [
    "ADMIN_PATCHABLE_FIELDS",
    "CheckoutGateway",
    "Geocoder",
    "ListingLifecycleService",
    "MediaStore",
    "MediaUpload",
    "NewTrial",
    "ReCheckout",
    "RegistrationOutcome",
    "RegistrationSubmission",
    "utcnow",
]
