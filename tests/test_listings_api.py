from __future__ import annotations

from datetime import datetime, timedelta, timezone

from services.listing_errors import TransientDependencyError
from services.listing_states import Expired, Paid, Trial

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

FORM = {
    "email": "Owner@Example.com",
    "name": "Fixers Ltd",
    "phone": "070 123 456",
    "address": "Partizanska 1",
    "city": "Skopje",
    "category": "plumbing",
    "plan": "standard",
}


def test_register_new_listing_returns_trial(api_client, media_store) -> None:
    files = [("photos", (f"p{index}.png", b"\x89PNG", "image/png")) for index in range(5)]
    files.append(("logo", ("logo.png", b"\x89PNG", "image/png")))

    response = api_client.post("/api/v1/listings", data=FORM, files=files)

    assert response.status_code == 200
    payload = response.json()
    assert payload["outcome"] == "trial"
    assert payload["paymentStatus"] == "trial"
    assert payload["redirectUrl"].endswith(f"firmId={payload['listingId']}")
    assert payload["trialEndsAt"].startswith("2025-07-10T12:00:00")
    assert len(media_store.uploads) == 4


def test_register_active_listing_conflicts(api_client, make_listing) -> None:
    make_listing(Paid(since=NOW, until=NOW + timedelta(days=30)), email="owner@example.com")

    response = api_client.post("/api/v1/listings", data=FORM)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "listing.already_active"
    assert detail["paymentStatus"] == "paid"
    assert detail["activeUntil"].startswith("2025-04-09T12:00:00")


def test_register_inactive_listing_returns_checkout(api_client, make_listing) -> None:
    listing = make_listing(Expired(since=NOW - timedelta(days=1)), email="owner@example.com")

    response = api_client.post("/api/v1/listings", data=FORM)

    assert response.status_code == 200
    payload = response.json()
    assert payload["outcome"] == "checkout"
    assert payload["paymentStatus"] == "pending"
    assert str(listing.id) in payload["checkoutUrl"]


def test_register_validation_and_location_errors(api_client, geocoder) -> None:
    bad_phone = api_client.post("/api/v1/listings", data={**FORM, "phone": "12"})
    assert bad_phone.status_code == 400
    assert bad_phone.json()["detail"]["field"] == "phone"

    geocoder.point = None
    unresolved = api_client.post("/api/v1/listings", data=FORM)
    assert unresolved.status_code == 400
    assert unresolved.json()["detail"]["code"] == "listing.location_unresolved"


def test_register_reports_dependency_outage(api_client, geocoder) -> None:
    geocoder.error = TransientDependencyError("geocoder", "Location service is unavailable. Please try again.")

    response = api_client.post("/api/v1/listings", data=FORM)

    assert response.status_code == 500
    assert response.json()["detail"]["service"] == "geocoder"


def test_public_queries_only_show_active_listings(api_client, make_listing) -> None:
    active = make_listing(Trial(started=NOW, ends=NOW + timedelta(days=30)))
    make_listing(Trial(started=NOW - timedelta(days=130), ends=NOW - timedelta(hours=1)))
    make_listing(Trial(started=NOW, ends=NOW + timedelta(days=30)), country="RS")

    listed = api_client.get("/api/v1/listings", params={"country": "mk"}).json()
    assert [item["id"] for item in listed["listings"]] == [str(active.id)]

    near = api_client.get(
        "/api/v1/listings/near",
        params={"lat": 41.99, "lng": 21.43, "radiusKm": 5000, "country": "MK"},
    ).json()
    assert near["radiusKm"] == 200
    assert [item["id"] for item in near["listings"]] == [str(active.id)]
    assert near["listings"][0]["distanceKm"] is not None


def test_near_rejects_out_of_range_coordinates(api_client) -> None:
    response = api_client.get("/api/v1/listings/near", params={"lat": 120, "lng": 21.43})
    assert response.status_code == 400


def test_status_lookup(api_client, make_listing) -> None:
    listing = make_listing(Trial(started=NOW, ends=NOW + timedelta(days=30)))

    response = api_client.get("/api/v1/listings/status", params={"email": listing.email.upper()})

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == str(listing.id)
    assert payload["active"] is True
    assert payload["paymentStatus"] == "trial"
    assert api_client.get("/api/v1/listings/status", params={"email": "ghost@example.com"}).status_code == 404


def test_self_service_links(api_client, make_listing, mailer) -> None:
    listing = make_listing(Expired(since=NOW - timedelta(days=2)))

    unknown = api_client.post("/api/v1/listings/delete-request", json={"email": "ghost@example.com"})
    assert unknown.status_code == 200
    assert mailer.sent == []

    requested = api_client.post("/api/v1/listings/pay-now/request", json={"email": listing.email})
    assert requested.json()["success"] is True
    assert len(mailer.sent) == 1

    invalid = api_client.post(
        "/api/v1/listings/delete-confirm",
        json={"email": listing.email, "token": "not-a-token"},
    )
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["message"] == "Invalid or expired link."

    bad_checkout = api_client.get("/api/v1/listings/pay-now/checkout", params={"token": "nope", "plan": "standard"})
    assert bad_checkout.status_code == 400
