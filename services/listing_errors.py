"""Error taxonomy for listing lifecycle operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional


class ListingError(RuntimeError):
    """Base class for errors surfaced to API callers with a short message."""

    code = "listing.error"
    status_code = 400

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(ListingError):
    """Malformed or missing input. Nothing is written."""

    code = "listing.invalid"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None, code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.field = field

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        if self.field:
            detail["field"] = self.field
        return detail


class LocationUnresolvedError(ListingError):
    code = "listing.location_unresolved"
    status_code = 400


class AlreadyActiveError(ListingError):
    """The identity already owns a listing with an open trial or paid window."""

    code = "listing.already_active"
    status_code = 409

    def __init__(self, message: str, *, status: str, active_until: Optional[datetime]) -> None:
        super().__init__(message)
        self.status = status
        self.active_until = active_until

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["paymentStatus"] = self.status
        detail["activeUntil"] = self.active_until.isoformat() if self.active_until else None
        return detail


class ListingNotFoundError(ListingError):
    code = "listing.not_found"
    status_code = 404


class InvalidTokenError(ListingError):
    code = "listing.invalid_token"
    status_code = 400


class SignatureError(ListingError):
    """Webhook authenticity failure; the payload must not be processed."""

    code = "payments.webhook_signature_invalid"
    status_code = 400


class TransientDependencyError(ListingError):
    """An external collaborator (geocoder, media host, checkout, mailer) is unavailable."""

    code = "dependency.unavailable"
    status_code = 500

    def __init__(self, service: str, message: str) -> None:
        super().__init__(message)
        self.service = service

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["service"] = self.service
        return detail


__all__ = [
    "AlreadyActiveError",
    "InvalidTokenError",
    "ListingError",
    "ListingNotFoundError",
    "LocationUnresolvedError",
    "SignatureError",
    "TransientDependencyError",
    "ValidationError",
]
