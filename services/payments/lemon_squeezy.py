"""Lemon Squeezy checkout client and webhook signature helpers."""

from __future__ import annotations

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from core.env import env_float, env_str
from core.listing_constants import ListingPlan
from core.listing_settings import ListingSettings, get_listing_settings
from core.logging import get_logger
from services.listing_errors import TransientDependencyError

logger = get_logger(__name__)

DEFAULT_LEMON_API_BASE_URL = "https://api.lemonsqueezy.com"
SIGNATURE_HEADERS = ("x-signature", "x-signature-256")
_SIGNATURE_PREFIX = "sha256="
_JSON_API = "application/vnd.api+json"


@dataclass
class LemonCheckoutClient:
    """HTTP client wrapper for the Lemon Squeezy checkouts API."""

    api_key: str
    store_id: str
    settings: ListingSettings
    base_url: str = DEFAULT_LEMON_API_BASE_URL
    timeout: float = 9.0

    def _redirect_url(self, *, email: str, listing_id: uuid.UUID) -> str:
        query = urlencode({"email": email, "firmId": str(listing_id)})
        return f"{self.settings.frontend_success_url}?{query}"

    def build_payload(self, *, variant_id: str, email: str, listing_id: uuid.UUID) -> Dict[str, Any]:
        return {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "product_options": {"redirect_url": self._redirect_url(email=email, listing_id=listing_id)},
                    "checkout_data": {
                        "email": email,
                        "custom": {"email": email, "firmId": str(listing_id)},
                    },
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(self.store_id)}},
                    "variant": {"data": {"type": "variants", "id": str(variant_id)}},
                },
            }
        }

    def create_checkout(self, *, plan: ListingPlan, email: str, listing_id: uuid.UUID) -> str:
        """Create a hosted checkout for ``plan`` and return its URL."""
        variant_id = self.settings.variant_for_plan(plan)
        if not variant_id:
            raise TransientDependencyError("checkout", f"No checkout variant configured for plan '{plan.value}'.")

        url = f"{self.base_url.rstrip('/')}/v1/checkouts"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": _JSON_API,
            "Content-Type": _JSON_API,
        }
        payload = self.build_payload(variant_id=variant_id, email=email, listing_id=listing_id)
        logger.info("Creating Lemon Squeezy checkout for listing=%s plan=%s", listing_id, plan.value)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            logger.warning("Lemon Squeezy request error: %s", exc)
            raise TransientDependencyError("checkout", "Checkout service is unavailable.") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"body": response.text}
        if response.status_code >= 400:
            logger.warning("Lemon Squeezy API error %s: %s", response.status_code, body)
            raise TransientDependencyError("checkout", "Checkout could not be created.")

        checkout_url = ((body.get("data") or {}).get("attributes") or {}).get("url") if isinstance(body, dict) else None
        if not checkout_url:
            raise TransientDependencyError("checkout", "Checkout URL missing from provider response.")
        return str(checkout_url)


class UnconfiguredCheckoutGateway:
    """Stands in when Lemon Squeezy credentials are missing; every checkout fails fast."""

    def create_checkout(self, *, plan: ListingPlan, email: str, listing_id: uuid.UUID) -> str:
        raise TransientDependencyError("checkout", "Checkout is not configured.")


def get_lemon_checkout_client(settings: Optional[ListingSettings] = None) -> LemonCheckoutClient:
    api_key = env_str("LEMON_API_KEY")
    store_id = env_str("LEMON_STORE_ID")
    if not api_key or not store_id:
        raise RuntimeError("Lemon Squeezy API key or store id is not configured.")
    return LemonCheckoutClient(
        api_key=api_key,
        store_id=store_id,
        settings=settings or get_listing_settings(),
        base_url=env_str("LEMON_API_BASE_URL", DEFAULT_LEMON_API_BASE_URL) or DEFAULT_LEMON_API_BASE_URL,
        timeout=env_float("EXTERNAL_TIMEOUT_SECONDS", 9.0, minimum=1.0),
    )


def get_lemon_webhook_secret() -> str:
    secret = env_str("LEMON_WEBHOOK_SECRET")
    if not secret:
        raise RuntimeError("Lemon Squeezy webhook secret is not configured.")
    return secret


def signature_from_headers(headers: Mapping[str, str]) -> str:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return ""


def compute_webhook_signature(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(*, payload: bytes, signature_header: str, secret: Optional[str] = None) -> bool:
    """Check a hex HMAC-SHA256 of the raw request bytes against ``signature_header``."""
    secret_key = secret or get_lemon_webhook_secret()
    signature = (signature_header or "").strip()
    if signature.startswith(_SIGNATURE_PREFIX):
        signature = signature[len(_SIGNATURE_PREFIX):]
    if not signature:
        return False
    expected = compute_webhook_signature(payload, secret_key)
    return hmac.compare_digest(expected.encode("utf-8"), signature.lower().encode("utf-8"))


__all__ = [
    "LemonCheckoutClient",
    "SIGNATURE_HEADERS",
    "UnconfiguredCheckoutGateway",
    "compute_webhook_signature",
    "get_lemon_checkout_client",
    "get_lemon_webhook_secret",
    "signature_from_headers",
    "verify_webhook_signature",
]
