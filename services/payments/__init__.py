"""Payments service helpers."""

from .lemon_squeezy import (
    LemonCheckoutClient,
    get_lemon_checkout_client,
    get_lemon_webhook_secret,
    signature_from_headers,
    verify_webhook_signature,
)

__all__ = [
    "LemonCheckoutClient",
    "get_lemon_checkout_client",
    "get_lemon_webhook_secret",
    "signature_from_headers",
    "verify_webhook_signature",
]
