"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request

from core.listing_settings import ListingSettings, get_listing_settings
from core.logging import get_logger
from database import SessionLocal
from services.email_service import Mailer, ResendMailer
from services.geocoding_service import NominatimGeocoder
from services.listing_credentials import ListingCredentialService
from services.listing_errors import ListingError
from services.listing_lifecycle import CheckoutGateway, ListingLifecycleService, MediaStore
from services.maintenance.listing_sweeper import ExpirySweeper
from services.minio_service import MinioMediaStore
from services.payments import get_lemon_checkout_client
from services.payments.lemon_squeezy import UnconfiguredCheckoutGateway
from services.payments.lemon_webhook import WebhookReconciler

logger = get_logger(__name__)


def listing_http_error(exc: ListingError) -> HTTPException:
    """Translate a domain error into the API's ``{"code", "message"}`` detail shape."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def get_settings() -> ListingSettings:
    return get_listing_settings()


@lru_cache(maxsize=1)
def get_mailer() -> Optional[Mailer]:
    return ResendMailer.from_env()


@lru_cache(maxsize=1)
def get_media_store() -> Optional[MediaStore]:
    return MinioMediaStore.from_env()


@lru_cache(maxsize=1)
def get_checkout_gateway() -> CheckoutGateway:
    try:
        return get_lemon_checkout_client()
    except RuntimeError as exc:
        logger.error("Checkout gateway unavailable: %s", exc)
        return UnconfiguredCheckoutGateway()


@lru_cache(maxsize=1)
def _lifecycle_service() -> ListingLifecycleService:
    return ListingLifecycleService(
        geocoder=NominatimGeocoder.from_env(),
        media_store=get_media_store(),
        checkout_gateway=get_checkout_gateway(),
        settings=get_listing_settings(),
    )


def get_lifecycle_service() -> ListingLifecycleService:
    return _lifecycle_service()


def get_credential_service(
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> ListingCredentialService:
    return ListingCredentialService(lifecycle, get_mailer())


def get_webhook_reconciler(
    lifecycle: ListingLifecycleService = Depends(get_lifecycle_service),
) -> WebhookReconciler:
    return WebhookReconciler(lifecycle)


def build_sweeper() -> ExpirySweeper:
    return ExpirySweeper(SessionLocal, settings=get_listing_settings(), mailer=get_mailer())


def get_sweeper(request: Request) -> ExpirySweeper:
    """Return the process sweeper, creating one (not started) when the app has none."""
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        sweeper = build_sweeper()
        request.app.state.sweeper = sweeper
    return sweeper


__all__ = [
    "build_sweeper",
    "get_checkout_gateway",
    "get_credential_service",
    "get_lifecycle_service",
    "get_mailer",
    "get_media_store",
    "get_settings",
    "get_sweeper",
    "get_webhook_reconciler",
    "listing_http_error",
]
