"""Administrative listing endpoints (bearer-token gated)."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from core.listing_constants import parse_plan, parse_status
from core.logging import get_logger
from database import get_db
from schemas.api.admin import (
    AdminListingListResponse,
    AdminListingPatchRequest,
    AdminListingResponse,
    AdminMarkPaidRequest,
    AdminStatsResponse,
    AdminSweepResponse,
    AdminWebhookEventListResponse,
    AdminWebhookEventResponse,
)
from services import listing_repository as repo
from services.identity import clean_text, normalize_country
from services.listing_errors import ListingError, ValidationError
from services.listing_lifecycle import ListingLifecycleService
from services.maintenance.listing_sweeper import ExpirySweeper
from services.payments.webhook_audit import read_recent_webhook_events
from web.deps import get_lifecycle_service, get_sweeper, listing_http_error
from web.deps_admin import AdminSession, require_admin_session

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin_session)])

logger = get_logger(__name__)


def _filter_value(value: Optional[str]) -> Optional[str]:
    text = clean_text(value).lower()
    if not text or text == "all":
        return None
    return text


@router.get("/listings", response_model=AdminListingListResponse, summary="List listings regardless of state.")
def list_admin_listings(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    plan: Optional[str] = Query(default=None),
    country: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None, max_length=200),
    db: Session = Depends(get_db),
) -> AdminListingListResponse:
    status_value = _filter_value(status_filter)
    plan_value = _filter_value(plan)
    country_value = _filter_value(country)
    country_code = normalize_country(country_value, default="") if country_value else None
    try:
        if status_value and parse_status(status_value) is None:
            raise ValidationError("Unknown payment status filter.", field="status")
        if plan_value and parse_plan(plan_value) is None:
            raise ValidationError("Unknown plan filter.", field="plan")
        if country_value and not country_code:
            raise ValidationError("Country filter must be an ISO-2 code.", field="country")
    except ListingError as exc:
        raise listing_http_error(exc) from exc

    listings = repo.list_all(
        db,
        status=status_value,
        plan=plan_value,
        country=country_code,
        search=clean_text(q) or None,
    )
    items = [AdminListingResponse.from_model(listing) for listing in listings]
    return AdminListingListResponse(listings=items, count=len(items))


@router.get("/stats", response_model=AdminStatsResponse, summary="Listing counts by payment status.")
def read_admin_stats(db: Session = Depends(get_db)) -> AdminStatsResponse:
    return AdminStatsResponse(**repo.count_by_status(db))


@router.put("/listings/{listing_id}", response_model=AdminListingResponse, summary="Patch a listing.")
def patch_admin_listing(
    listing_id: uuid.UUID,
    payload: AdminListingPatchRequest,
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
    admin: AdminSession = Depends(require_admin_session),
) -> AdminListingResponse:
    patch = payload.model_dump(exclude_unset=True)
    try:
        listing = lifecycle.admin_patch(db, listing_id, patch)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    logger.info("Listing %s patched by %s.", listing_id, admin.actor)
    return AdminListingResponse.from_model(listing)


@router.post("/listings/{listing_id}/expire", response_model=AdminListingResponse, summary="Expire a listing now.")
def expire_admin_listing(
    listing_id: uuid.UUID,
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> AdminListingResponse:
    try:
        listing = lifecycle.admin_expire(db, listing_id)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return AdminListingResponse.from_model(listing)


@router.post("/listings/{listing_id}/mark-paid", response_model=AdminListingResponse, summary="Open a paid window.")
def mark_admin_listing_paid(
    listing_id: uuid.UUID,
    payload: Optional[AdminMarkPaidRequest] = Body(default=None),
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> AdminListingResponse:
    days = payload.days if payload is not None else None
    try:
        listing = lifecycle.admin_mark_paid(db, listing_id, days=days)
    except ListingError as exc:
        raise listing_http_error(exc) from exc
    return AdminListingResponse.from_model(listing)


@router.delete("/listings/{listing_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Hard-delete a listing.")
def delete_admin_listing(
    listing_id: uuid.UUID,
    db: Session = Depends(get_db),
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> None:
    try:
        lifecycle.admin_delete(db, listing_id)
    except ListingError as exc:
        raise listing_http_error(exc) from exc


@router.post("/sweep", response_model=AdminSweepResponse, summary="Run an expiry sweep immediately.")
def run_admin_sweep(sweeper: ExpirySweeper = Depends(get_sweeper)) -> AdminSweepResponse:
    report = sweeper.tick()
    return AdminSweepResponse(
        startedAt=report.started_at,
        skipped=report.skipped,
        counts=report.counts,
        failedSteps=report.failed_steps,
    )


@router.get(
    "/webhooks/events",
    response_model=AdminWebhookEventListResponse,
    summary="Recent payment webhook deliveries and their outcomes.",
)
def list_webhook_events(
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> AdminWebhookEventListResponse:
    entries = read_recent_webhook_events(db, limit=limit)
    return AdminWebhookEventListResponse(events=[AdminWebhookEventResponse.from_model(entry) for entry in entries])


__all__ = ["router"]
