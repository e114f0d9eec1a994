"""Payment provider webhook intake."""

from __future__ import annotations

import json
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from database import get_db
from services.payments import signature_from_headers, verify_webhook_signature
from services.payments.lemon_webhook import WebhookReconciler, record_invalid_payload
from services.listing_errors import SignatureError
from web.deps import get_webhook_reconciler, listing_http_error

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = get_logger(__name__)


@router.post(
    "/webhook",
    summary="Receive a signed Lemon Squeezy webhook.",
)
async def handle_lemon_webhook(
    request: Request,
    db: Session = Depends(get_db),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> Dict[str, str]:
    # The signature covers the exact bytes received; read them before any parsing.
    raw_body = await request.body()
    signature_header = signature_from_headers(request.headers)

    try:
        is_valid = verify_webhook_signature(payload=raw_body, signature_header=signature_header)
    except RuntimeError as exc:
        logger.error("Lemon webhook signature verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.webhook_signature_unavailable", "message": str(exc)},
        ) from exc

    if not is_valid:
        logger.warning("Lemon webhook signature invalid.", extra={"webhook": {"has_signature": bool(signature_header)}})
        raise listing_http_error(SignatureError("Invalid signature."))

    try:
        payload = json.loads(raw_body.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("webhook payload must be a JSON object")
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Lemon webhook payload decode failed: %s", exc)
        try:
            record_invalid_payload(db, message=str(exc))
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to audit invalid webhook payload.")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": "Webhook body could not be parsed."},
        ) from exc

    try:
        outcome = reconciler.reconcile(db, payload)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Lemon webhook processing failed.")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "payments.webhook_failed", "message": "Webhook error."},
        ) from exc

    return {"status": outcome.result}


__all__ = ["router"]
