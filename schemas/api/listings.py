"""Listing API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.listing import Listing
from services.listing_states import as_utc, state_of


class ListingPublicResponse(BaseModel):
    id: str
    name: str
    phone: str
    address: str
    city: str
    category: str
    country: Optional[str] = None
    plan: str
    latitude: float
    longitude: float
    logoUrl: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
    distanceKm: Optional[float] = Field(default=None, description="Distance from the query point, when given.")

    @classmethod
    def from_model(cls, listing: Listing, *, distance_km: Optional[float] = None) -> "ListingPublicResponse":
        return cls(
            id=str(listing.id),
            name=listing.name,
            phone=listing.phone,
            address=listing.address,
            city=listing.city,
            category=listing.category,
            country=listing.country,
            plan=listing.plan,
            latitude=listing.latitude,
            longitude=listing.longitude,
            logoUrl=listing.logo_url,
            photos=list(listing.photos or []),
            distanceKm=round(distance_km, 3) if distance_km is not None else None,
        )


class ListingCollectionResponse(BaseModel):
    listings: List[ListingPublicResponse]
    count: int
    radiusKm: Optional[float] = None


class ListingStatusResponse(BaseModel):
    id: str
    email: str
    plan: str
    paymentStatus: str
    active: bool
    activeUntil: Optional[datetime] = None
    trialStartedAt: Optional[datetime] = None
    trialEndsAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    deletedAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, listing: Listing, *, now: datetime) -> "ListingStatusResponse":
        state = state_of(listing)
        active = state.is_active(now)
        return cls(
            id=str(listing.id),
            email=listing.email,
            plan=listing.plan,
            paymentStatus=listing.payment_status,
            active=active,
            activeUntil=state.window_end if active else None,
            trialStartedAt=as_utc(listing.trial_started_at),
            trialEndsAt=as_utc(listing.trial_ends_at),
            paidAt=as_utc(listing.paid_at),
            expiresAt=as_utc(listing.expires_at),
            deletedAt=as_utc(listing.deleted_at),
        )


class RegistrationResponse(BaseModel):
    success: bool = True
    outcome: str = Field(..., description="'trial' for a new listing, 'checkout' when payment is required.")
    listingId: str
    paymentStatus: str
    redirectUrl: Optional[str] = None
    checkoutUrl: Optional[str] = None
    trialEndsAt: Optional[datetime] = None


class DeleteRequestPayload(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    reason: Optional[str] = Field(default=None, max_length=500)


class DeleteConfirmPayload(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    token: str = Field(..., min_length=1, max_length=256)


class PayLinkRequestPayload(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)


class AcknowledgeResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class CheckoutUrlResponse(BaseModel):
    success: bool = True
    checkoutUrl: str


__all__ = [
    "AcknowledgeResponse",
    "CheckoutUrlResponse",
    "DeleteConfirmPayload",
    "DeleteRequestPayload",
    "ListingCollectionResponse",
    "ListingPublicResponse",
    "ListingStatusResponse",
    "PayLinkRequestPayload",
    "RegistrationResponse",
]
