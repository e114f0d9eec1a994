from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from models.payments import ListingWebhookEvent
from services import listing_repository as repo
from services.listing_states import Pending, Trial, as_utc
from services.payments.lemon_squeezy import compute_webhook_signature

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "demo_webhook_secret"
WEBHOOK_URL = "/api/v1/payments/webhook"


@pytest.fixture()
def webhook_client(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("LEMON_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return api_client


def _signed(payload: Dict[str, Any], *, header: str = "X-Signature", prefix: str = "") -> Dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    signature = compute_webhook_signature(body, WEBHOOK_SECRET)
    return {"content": body, "headers": {header: f"{prefix}{signature}", "Content-Type": "application/json"}}


def _order_paid(email: str) -> Dict[str, Any]:
    return {
        "meta": {"event_name": "order_paid"},
        "data": {"type": "orders", "id": "7001", "attributes": {"user_email": email, "first_order_item": {"variant_id": 102}}},
    }


def test_signed_payment_marks_listing_paid(webhook_client: TestClient, make_listing, db_session) -> None:
    listing = make_listing(Pending())

    response = webhook_client.post(WEBHOOK_URL, **_signed(_order_paid(listing.email)))

    assert response.status_code == 200
    assert response.json() == {"status": "paid_applied"}
    stored = repo.get_by_id(db_session, listing.id)
    assert stored.payment_status == "paid"
    assert stored.plan == "standard"
    assert as_utc(stored.expires_at) == NOW + timedelta(days=30)


def test_alternate_signature_header_with_prefix(webhook_client: TestClient, make_listing) -> None:
    listing = make_listing(Pending())

    response = webhook_client.post(
        WEBHOOK_URL,
        **_signed(_order_paid(listing.email), header="X-Signature-256", prefix="sha256="),
    )

    assert response.json() == {"status": "paid_applied"}


def test_tampered_body_is_rejected_without_mutation(webhook_client: TestClient, make_listing, db_session) -> None:
    listing = make_listing(Pending())
    request = _signed(_order_paid(listing.email))
    request["content"] = request["content"].replace(b"7001", b"7002")

    response = webhook_client.post(WEBHOOK_URL, **request)

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "payments.webhook_signature_invalid"
    assert repo.get_by_id(db_session, listing.id).payment_status == "pending"


def test_missing_signature_is_rejected(webhook_client: TestClient) -> None:
    response = webhook_client.post(WEBHOOK_URL, content=b"{}", headers={"Content-Type": "application/json"})
    assert response.status_code == 400


def test_unconfigured_secret_is_service_unavailable(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LEMON_WEBHOOK_SECRET", raising=False)

    response = api_client.post(WEBHOOK_URL, content=b"{}", headers={"X-Signature": "abc"})

    assert response.status_code == 503


def test_malformed_json_is_audited(webhook_client: TestClient, db_session) -> None:
    body = b"{not json"
    headers = {"X-Signature": compute_webhook_signature(body, WEBHOOK_SECRET)}

    response = webhook_client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400
    results = list(db_session.execute(select(ListingWebhookEvent.result)).scalars())
    assert results == ["payload_invalid"]


def test_unsupported_and_unknown_events_are_acknowledged(webhook_client: TestClient, make_listing, db_session) -> None:
    listing = make_listing(Trial(started=NOW, ends=NOW + timedelta(days=10)))
    ignored = {"meta": {"event_name": "subscription_updated"}, "data": {"id": "1", "attributes": {"user_email": listing.email}}}

    assert webhook_client.post(WEBHOOK_URL, **_signed(ignored)).json() == {"status": "ignored_unsupported_event"}
    assert webhook_client.post(WEBHOOK_URL, **_signed(_order_paid("ghost@example.com"))).json() == {
        "status": "listing_not_found"
    }
    assert repo.get_by_id(db_session, listing.id).payment_status == "trial"


def test_redelivery_does_not_extend_window(webhook_client: TestClient, make_listing, db_session, clock) -> None:
    listing = make_listing(Pending())
    request = _signed(_order_paid(listing.email))

    webhook_client.post(WEBHOOK_URL, **request)
    clock.advance(days=5)
    second = webhook_client.post(WEBHOOK_URL, **request)

    assert second.json() == {"status": "duplicate_skipped"}
    assert as_utc(repo.get_by_id(db_session, listing.id).expires_at) == NOW + timedelta(days=30)
