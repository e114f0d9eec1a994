"""Persistence access for listings.

Every lifecycle write is a single ``UPDATE ... WHERE`` statement so concurrent
transitions on the same row resolve at field level without a read-modify-write
race. Bulk sweeps are set-based statements evaluated against ``now``.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from core.listing_constants import PaymentStatus
from models.listing import Listing

_EARTH_RADIUS_KM = 6371.0088
_SEARCHABLE_COLUMNS = (
    Listing.name,
    Listing.email,
    Listing.phone,
    Listing.category,
    Listing.address,
    Listing.city,
    Listing.country,
)


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


def active_clause(now: datetime) -> ColumnElement[bool]:
    """
    The single predicate deciding whether a listing is publicly visible.

    Evaluated against ``now`` on every query, so a trial whose end has passed
    disappears before the sweeper flips its status.
    """
    return or_(
        and_(Listing.payment_status == PaymentStatus.PAID.value, Listing.expires_at > now),
        and_(Listing.payment_status == PaymentStatus.TRIAL.value, Listing.trial_ends_at > now),
    )


def country_clause(country: str, *, default_country: str) -> ColumnElement[bool]:
    # Rows written before country was captured belong to the default market.
    if country == default_country:
        return or_(Listing.country == country, Listing.country.is_(None), Listing.country == "")
    return Listing.country == country


def get_by_email(db: Session, email: str) -> Optional[Listing]:
    stmt = select(Listing).where(Listing.email == email).execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def get_by_id(db: Session, listing_id: uuid.UUID) -> Optional[Listing]:
    return db.get(Listing, listing_id, populate_existing=True)


def find_by_reference(
    db: Session,
    *,
    listing_id: Optional[uuid.UUID],
    email: Optional[str],
) -> Optional[Listing]:
    """Resolve a listing by explicit id first, then by normalised email."""
    if listing_id is not None:
        listing = get_by_id(db, listing_id)
        if listing is not None:
            return listing
    if email:
        return get_by_email(db, email)
    return None


def insert_listing(db: Session, listing: Listing) -> Listing:
    """Stage ``listing`` and flush so unique-email violations surface immediately."""
    db.add(listing)
    db.flush()
    return listing


def update_listing(db: Session, listing_id: uuid.UUID, values: Mapping[str, Any]) -> bool:
    stmt = (
        update(Listing)
        .where(Listing.id == listing_id)
        .values(**dict(values))
        .execution_options(synchronize_session=False)
    )
    return (db.execute(stmt).rowcount or 0) > 0


def update_listing_if_inactive(
    db: Session,
    listing_id: uuid.UUID,
    values: Mapping[str, Any],
    *,
    now: datetime,
) -> bool:
    """Apply ``values`` only while the row has no open trial or paid window."""
    stmt = (
        update(Listing)
        .where(Listing.id == listing_id, ~active_clause(now))
        .values(**dict(values))
        .execution_options(synchronize_session=False)
    )
    return (db.execute(stmt).rowcount or 0) > 0


def delete_listing(db: Session, listing_id: uuid.UUID) -> bool:
    stmt = delete(Listing).where(Listing.id == listing_id).execution_options(synchronize_session=False)
    return (db.execute(stmt).rowcount or 0) > 0


def expire_lapsed_paid(db: Session, now: datetime) -> int:
    stmt = (
        update(Listing)
        .where(Listing.payment_status == PaymentStatus.PAID.value, Listing.expires_at <= now)
        .values(payment_status=PaymentStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    return max(db.execute(stmt).rowcount or 0, 0)


def expire_lapsed_trials(db: Session, now: datetime) -> int:
    stmt = (
        update(Listing)
        .where(Listing.payment_status == PaymentStatus.TRIAL.value, Listing.trial_ends_at <= now)
        .values(payment_status=PaymentStatus.EXPIRED.value, expires_at=now)
        .execution_options(synchronize_session=False)
    )
    return max(db.execute(stmt).rowcount or 0, 0)


def purge_expired(db: Session, cutoff: datetime) -> int:
    stmt = (
        delete(Listing)
        .where(Listing.payment_status == PaymentStatus.EXPIRED.value, Listing.expires_at <= cutoff)
        .execution_options(synchronize_session=False)
    )
    return max(db.execute(stmt).rowcount or 0, 0)


def list_active(
    db: Session,
    *,
    now: datetime,
    country: Optional[str] = None,
    default_country: str = "MK",
) -> List[Listing]:
    stmt = select(Listing).where(active_clause(now))
    if country:
        stmt = stmt.where(country_clause(country, default_country=default_country))
    stmt = stmt.order_by(Listing.created_at.desc())
    return list(db.execute(stmt).scalars())


def haversine_km(origin: GeoPoint, target: GeoPoint) -> float:
    lat1, lat2 = math.radians(origin.latitude), math.radians(target.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(target.longitude - origin.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * _EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def _bounding_box(origin: GeoPoint, radius_km: float) -> Tuple[float, float, float, float]:
    lat_delta = math.degrees(radius_km / _EARTH_RADIUS_KM)
    cos_lat = math.cos(math.radians(origin.latitude))
    if cos_lat < 1e-6:
        lng_delta = 180.0
    else:
        lng_delta = min(180.0, math.degrees(radius_km / (_EARTH_RADIUS_KM * cos_lat)))
    return (
        max(-90.0, origin.latitude - lat_delta),
        min(90.0, origin.latitude + lat_delta),
        origin.longitude - lng_delta,
        origin.longitude + lng_delta,
    )


def list_active_near(
    db: Session,
    *,
    now: datetime,
    origin: GeoPoint,
    radius_km: float,
    country: Optional[str] = None,
    default_country: str = "MK",
) -> List[Tuple[Listing, float]]:
    """Active listings within ``radius_km`` of ``origin``, nearest first."""
    min_lat, max_lat, min_lng, max_lng = _bounding_box(origin, radius_km)
    stmt = select(Listing).where(
        active_clause(now),
        Listing.latitude.between(min_lat, max_lat),
    )
    # A box crossing the antimeridian is left to the haversine filter below.
    if min_lng >= -180.0 and max_lng <= 180.0:
        stmt = stmt.where(Listing.longitude.between(min_lng, max_lng))
    if country:
        stmt = stmt.where(country_clause(country, default_country=default_country))

    matches: List[Tuple[Listing, float]] = []
    for listing in db.execute(stmt).scalars():
        distance = haversine_km(origin, GeoPoint(listing.latitude, listing.longitude))
        if distance <= radius_km:
            matches.append((listing, distance))
    matches.sort(key=lambda item: item[1])
    return matches


def list_all(
    db: Session,
    *,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    country: Optional[str] = None,
    search: Optional[str] = None,
) -> List[Listing]:
    stmt = select(Listing)
    if status:
        stmt = stmt.where(Listing.payment_status == status)
    if plan:
        stmt = stmt.where(Listing.plan == plan)
    if country:
        stmt = stmt.where(Listing.country == country)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(or_(*(func.lower(column).like(pattern) for column in _SEARCHABLE_COLUMNS)))
    stmt = stmt.order_by(Listing.created_at.desc())
    return list(db.execute(stmt).scalars())


def count_by_status(db: Session) -> Dict[str, int]:
    rows = db.execute(select(Listing.payment_status, func.count()).group_by(Listing.payment_status)).all()
    counts = {status.value: 0 for status in PaymentStatus}
    for status_value, count in rows:
        counts[str(status_value)] = int(count)
    counts["total"] = sum(counts.values())
    return counts


def select_window_candidates(
    db: Session,
    *,
    status: PaymentStatus,
    window_column: Any,
    marker_column: Any,
    start: datetime,
    end: datetime,
) -> Sequence[Listing]:
    """Listings in ``status`` whose window ends within [start, end] and not yet notified."""
    stmt = select(Listing).where(
        Listing.payment_status == status.value,
        window_column >= start,
        window_column <= end,
        marker_column.is_(None),
    )
    return list(db.execute(stmt).scalars())


def get_by_pay_token_hash(db: Session, token_hash: str) -> Optional[Listing]:
    stmt = select(Listing).where(Listing.pay_token_hash == token_hash).execution_options(populate_existing=True)
    return db.execute(stmt).scalars().first()


__all__ = [
    "GeoPoint",
    "active_clause",
    "count_by_status",
    "country_clause",
    "delete_listing",
    "expire_lapsed_paid",
    "expire_lapsed_trials",
    "find_by_reference",
    "get_by_email",
    "get_by_id",
    "get_by_pay_token_hash",
    "haversine_km",
    "insert_listing",
    "list_active",
    "list_active_near",
    "list_all",
    "purge_expired",
    "select_window_candidates",
    "update_listing",
    "update_listing_if_inactive",
]
