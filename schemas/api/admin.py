"""Schemas for listing administration APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.listing import Listing
from models.payments import ListingWebhookEvent
from services.listing_states import as_utc


class AdminListingResponse(BaseModel):
    id: str
    email: str
    name: str
    phone: str
    address: str
    city: str
    category: str
    country: Optional[str]
    plan: str
    paymentStatus: str
    latitude: float
    longitude: float
    logoUrl: Optional[str]
    photos: List[str]
    trialStartedAt: Optional[datetime]
    trialEndsAt: Optional[datetime]
    paidAt: Optional[datetime]
    expiresAt: Optional[datetime]
    deletedAt: Optional[datetime]
    createdAt: Optional[datetime]
    updatedAt: Optional[datetime]

    @classmethod
    def from_model(cls, listing: Listing) -> "AdminListingResponse":
        return cls(
            id=str(listing.id),
            email=listing.email,
            name=listing.name,
            phone=listing.phone,
            address=listing.address,
            city=listing.city,
            category=listing.category,
            country=listing.country,
            plan=listing.plan,
            paymentStatus=listing.payment_status,
            latitude=listing.latitude,
            longitude=listing.longitude,
            logoUrl=listing.logo_url,
            photos=list(listing.photos or []),
            trialStartedAt=as_utc(listing.trial_started_at),
            trialEndsAt=as_utc(listing.trial_ends_at),
            paidAt=as_utc(listing.paid_at),
            expiresAt=as_utc(listing.expires_at),
            deletedAt=as_utc(listing.deleted_at),
            createdAt=as_utc(listing.created_at),
            updatedAt=as_utc(listing.updated_at),
        )


class AdminListingListResponse(BaseModel):
    listings: List[AdminListingResponse]
    count: int


class AdminListingPatchRequest(BaseModel):
    """Partial update; only fields present in the request body are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    category: Optional[str] = None
    plan: Optional[str] = None
    country: Optional[str] = None
    payment_status: Optional[str] = None
    expires_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None


class AdminMarkPaidRequest(BaseModel):
    days: Optional[int] = Field(default=None, description="Length of the paid window; clamped to 1..3650.")


class AdminStatsResponse(BaseModel):
    total: int
    pending: int
    trial: int
    paid: int
    expired: int


class AdminSweepResponse(BaseModel):
    startedAt: datetime
    skipped: bool
    counts: Dict[str, int]
    failedSteps: List[str]


class AdminWebhookEventResponse(BaseModel):
    id: str
    loggedAt: Optional[datetime]
    result: str
    eventName: Optional[str] = None
    dedupeKey: Optional[str] = None
    listingId: Optional[str] = None
    email: Optional[str] = None
    message: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_model(cls, entry: ListingWebhookEvent) -> "AdminWebhookEventResponse":
        return cls(
            id=str(entry.id),
            loggedAt=as_utc(entry.created_at),
            result=entry.result,
            eventName=entry.event_name,
            dedupeKey=entry.dedupe_key,
            listingId=str(entry.listing_id) if entry.listing_id else None,
            email=entry.email,
            message=entry.message,
            context=dict(entry.context or {}),
        )


class AdminWebhookEventListResponse(BaseModel):
    events: List[AdminWebhookEventResponse]


__all__ = [
    "AdminListingListResponse",
    "AdminListingPatchRequest",
    "AdminListingResponse",
    "AdminMarkPaidRequest",
    "AdminStatsResponse",
    "AdminSweepResponse",
    "AdminWebhookEventListResponse",
    "AdminWebhookEventResponse",
]
