"""Public listing endpoints: registration, discovery, status and self-service links."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from database import get_db
from schemas.api.listings import (
    AcknowledgeResponse,
    CheckoutUrlResponse,
    DeleteConfirmPayload,
    DeleteRequestPayload,
    ListingCollectionResponse,
    ListingPublicResponse,
    ListingStatusResponse,
    PayLinkRequestPayload,
    RegistrationResponse,
)
from services.listing_credentials import ListingCredentialService
from services.listing_errors import ListingError, ValidationError
from services.listing_lifecycle import (
    ListingLifecycleService,
    MediaUpload,
    NewTrial,
    RegistrationSubmission,
)
from services.listing_states import as_utc
from web.deps import get_credential_service, get_lifecycle_service, listing_http_error

router = APIRouter(prefix="/listings", tags=["Listings"])

logger = get_logger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
_LINK_SENT_MESSAGE = "If the email exists, we sent a link."


def _server_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "listing.server_error", "message": "Server error."},
    )


def _read_upload(upload: Optional[UploadFile], *, field: str) -> Optional[MediaUpload]:
    if upload is None or not upload.filename:
        return None
    content = upload.file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Each image must be 5 MB or smaller.", field=field)
    if not content:
        return None
    return MediaUpload(
        filename=upload.filename,
        content=content,
        content_type=upload.content_type or "application/octet-stream",
    )


@router.post(
    "",
    response_model=RegistrationResponse,
    summary="Register a listing or restart checkout for an inactive one.",
)
def register_listing(
    email: str = Form(...),
    name: str = Form(...),
    phone: str = Form(...),
    address: str = Form(...),
    city: str = Form(...),
    category: str = Form(...),
    plan: str = Form("basic"),
    country: Optional[str] = Form(None),
    logo: Optional[UploadFile] = File(None),
    photos: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> RegistrationResponse:
    try:
        submission = RegistrationSubmission(
            email=email,
            name=name,
            phone=phone,
            address=address,
            city=city,
            category=category,
            plan=plan,
            country=country,
            logo=_read_upload(logo, field="logo"),
            photos=[item for item in (_read_upload(photo, field="photos") for photo in photos or []) if item is not None],
        )
        outcome = lifecycle.register(db, submission)
    except ListingError as exc:
        logger.info("Registration rejected: %s (%s)", exc.code, exc.message)
        raise listing_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Registration failed on a database error.")
        raise _server_error() from exc

    listing = outcome.listing
    if isinstance(outcome, NewTrial):
        return RegistrationResponse(
            outcome="trial",
            listingId=str(listing.id),
            paymentStatus=listing.payment_status,
            redirectUrl=outcome.redirect_url,
            trialEndsAt=as_utc(listing.trial_ends_at),
        )
    return RegistrationResponse(
        outcome="checkout",
        listingId=str(listing.id),
        paymentStatus=listing.payment_status,
        checkoutUrl=outcome.checkout_url,
    )


@router.get("", response_model=ListingCollectionResponse, summary="List active listings.")
def list_listings(
    country: Optional[str] = Query(default=None, max_length=8),
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingCollectionResponse:
    try:
        rows = lifecycle.list_public(db, country=country)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    items = [ListingPublicResponse.from_model(listing) for listing, _ in rows]
    return ListingCollectionResponse(listings=items, count=len(items))


@router.get("/near", response_model=ListingCollectionResponse, summary="List active listings near a point.")
def list_listings_near(
    lat: float = Query(...),
    lng: float = Query(...),
    radius_km: Optional[float] = Query(default=None, alias="radiusKm"),
    country: Optional[str] = Query(default=None, max_length=8),
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingCollectionResponse:
    try:
        rows = lifecycle.list_public(db, country=country, latitude=lat, longitude=lng, radius_km=radius_km)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    items = [ListingPublicResponse.from_model(listing, distance_km=distance) for listing, distance in rows]
    return ListingCollectionResponse(listings=items, count=len(items), radiusKm=lifecycle.clamp_radius(radius_km))


@router.get("/status", response_model=ListingStatusResponse, summary="Lifecycle state for one email.")
def read_listing_status(
    email: str = Query(..., min_length=3),
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingStatusResponse:
    try:
        listing = lifecycle.status(db, email)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return ListingStatusResponse.from_model(listing, now=lifecycle.now())


@router.post("/delete-request", response_model=AcknowledgeResponse, summary="Mail a deletion confirmation link.")
def request_listing_deletion(
    payload: DeleteRequestPayload,
    db: Session = Depends(get_db),
    credentials: ListingCredentialService = Depends(get_credential_service),
) -> AcknowledgeResponse:
    try:
        credentials.request_deletion(db, payload.email, reason=payload.reason)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return AcknowledgeResponse(message="If the email exists, we sent a confirmation link.")


@router.post("/delete-confirm", response_model=AcknowledgeResponse, summary="Confirm deletion with a mailed token.")
def confirm_listing_deletion(
    payload: DeleteConfirmPayload,
    db: Session = Depends(get_db),
    credentials: ListingCredentialService = Depends(get_credential_service),
) -> AcknowledgeResponse:
    try:
        credentials.confirm_deletion(db, payload.email, payload.token)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return AcknowledgeResponse()


@router.post("/pay-now/request", response_model=AcknowledgeResponse, summary="Mail a pay-now link.")
def request_pay_link(
    payload: PayLinkRequestPayload,
    db: Session = Depends(get_db),
    credentials: ListingCredentialService = Depends(get_credential_service),
) -> AcknowledgeResponse:
    try:
        credentials.request_pay_link(db, payload.email)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return AcknowledgeResponse(message=_LINK_SENT_MESSAGE)


@router.get("/pay-now/checkout", response_model=CheckoutUrlResponse, summary="Redeem a pay-now link for a checkout.")
def pay_now_checkout(
    token: str = Query(...),
    plan: str = Query(...),
    db: Session = Depends(get_db),
    credentials: ListingCredentialService = Depends(get_credential_service),
) -> CheckoutUrlResponse:
    try:
        checkout_url = credentials.checkout_with_pay_token(db, token, plan)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return CheckoutUrlResponse(checkoutUrl=checkout_url)


__all__ = ["router"]
