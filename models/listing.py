"""SQLAlchemy model for directory listings."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Float, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from database import Base


class Listing(Base):
    """A business listing; one row per normalised contact email."""

    __tablename__ = "listings"
    __table_args__ = (
        Index(
            "ix_listings_status_country_plan_created",
            "payment_status",
            "country",
            "plan",
            "created_at",
        ),
        # Bounding-box prefilter for proximity queries; exact distance is haversine in Python.
        # Plain btree; PostGIS is not assumed.
        Index("ix_listings_geo", "latitude", "longitude", "payment_status", "country"),
        Index("ix_listings_trial_ends", "payment_status", "trial_ends_at"),
        Index("ix_listings_expires", "payment_status", "expires_at"),
        {"extend_existing": True},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    address = Column(String(512), nullable=False)
    city = Column(String(128), nullable=False)
    category = Column(String(128), nullable=False)
    country = Column(String(2), nullable=True, index=True)
    plan = Column(String(16), nullable=False, default="basic")

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    logo_url = Column(Text, nullable=True)
    photos = Column(JSON, nullable=False, default=list)

    payment_status = Column(String(16), nullable=False, default="pending", index=True)
    trial_started_at = Column(DateTime(timezone=True), nullable=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    trial_reminder_7d_sent_at = Column(DateTime(timezone=True), nullable=True)
    trial_reminder_1d_sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_reminder_7d_sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_reminder_1d_sent_at = Column(DateTime(timezone=True), nullable=True)
    expired_notice_sent_at = Column(DateTime(timezone=True), nullable=True)

    owner_token_hash = Column(String(64), nullable=True)
    owner_token_expires = Column(DateTime(timezone=True), nullable=True)
    delete_token_hash = Column(String(64), nullable=True, index=True)
    delete_token_expires = Column(DateTime(timezone=True), nullable=True)
    pay_token_hash = Column(String(64), nullable=True, index=True)
    pay_token_expires = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Listing id={self.id} email={self.email} status={self.payment_status}>"
