from __future__ import annotations

from datetime import datetime, timedelta, timezone

from services import listing_repository as repo
from services.listing_repository import GeoPoint, haversine_km
from services.listing_states import Expired, Paid, Pending, Trial, as_utc

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
SKOPJE = GeoPoint(41.9981, 21.4254)


def test_active_filter_excludes_lapsed_windows(db_session, make_listing) -> None:
    live_trial = make_listing(Trial(started=NOW - timedelta(days=10), ends=NOW + timedelta(days=5)))
    live_paid = make_listing(Paid(since=NOW - timedelta(days=1), until=NOW + timedelta(days=29)))
    make_listing(Trial(started=NOW - timedelta(days=130), ends=NOW - timedelta(minutes=1)))
    make_listing(Paid(since=NOW - timedelta(days=31), until=NOW - timedelta(days=1)))
    make_listing(Pending())
    make_listing(Expired(since=NOW - timedelta(days=2)))

    ids = {listing.id for listing in repo.list_active(db_session, now=NOW)}

    assert ids == {live_trial.id, live_paid.id}


def test_trial_window_end_is_exclusive(db_session, make_listing) -> None:
    make_listing(Trial(started=NOW - timedelta(days=120), ends=NOW))
    assert repo.list_active(db_session, now=NOW) == []


def test_country_filter_treats_missing_country_as_default(db_session, make_listing) -> None:
    trial = Trial(started=NOW, ends=NOW + timedelta(days=30))
    legacy = make_listing(trial, country=None)
    local = make_listing(trial, country="MK")
    foreign = make_listing(trial, country="RS")

    mk_ids = {listing.id for listing in repo.list_active(db_session, now=NOW, country="MK", default_country="MK")}
    rs_ids = {listing.id for listing in repo.list_active(db_session, now=NOW, country="RS", default_country="MK")}

    assert mk_ids == {legacy.id, local.id}
    assert rs_ids == {foreign.id}


def test_list_active_near_sorts_by_distance_and_drops_far_rows(db_session, make_listing) -> None:
    trial = Trial(started=NOW, ends=NOW + timedelta(days=30))
    near = make_listing(trial, latitude=SKOPJE.latitude + 0.01, longitude=SKOPJE.longitude)
    nearer = make_listing(trial, latitude=SKOPJE.latitude, longitude=SKOPJE.longitude + 0.001)
    make_listing(trial, latitude=41.1172, longitude=20.8016)  # Ohrid, ~100 km away

    matches = repo.list_active_near(db_session, now=NOW, origin=SKOPJE, radius_km=25)

    assert [listing.id for listing, _ in matches] == [nearer.id, near.id]
    assert all(distance <= 25 for _, distance in matches)


def test_haversine_known_distance() -> None:
    skopje_to_ohrid = haversine_km(SKOPJE, GeoPoint(41.1172, 20.8016))
    assert 100 < skopje_to_ohrid < 120


def test_update_if_inactive_refuses_active_rows(db_session, make_listing) -> None:
    listing = make_listing(Paid(since=NOW, until=NOW + timedelta(days=30)))

    changed = repo.update_listing_if_inactive(db_session, listing.id, {"name": "Hijacked"}, now=NOW)
    db_session.commit()

    assert changed is False
    assert repo.get_by_id(db_session, listing.id).name == listing.name


def test_sweep_statements(db_session, make_listing) -> None:
    lapsed_paid = make_listing(Paid(since=NOW - timedelta(days=31), until=NOW - timedelta(days=1)))
    lapsed_trial = make_listing(Trial(started=NOW - timedelta(days=121), ends=NOW - timedelta(hours=1)))
    stale = make_listing(Expired(since=NOW - timedelta(days=200)))
    recent = make_listing(Expired(since=NOW - timedelta(days=10)))

    assert repo.expire_lapsed_paid(db_session, NOW) == 1
    assert repo.expire_lapsed_trials(db_session, NOW) == 1
    assert repo.purge_expired(db_session, NOW - timedelta(days=180)) == 1
    db_session.commit()

    paid_row = repo.get_by_id(db_session, lapsed_paid.id)
    assert paid_row.payment_status == "expired"
    assert as_utc(paid_row.expires_at) == NOW - timedelta(days=1)
    trial_row = repo.get_by_id(db_session, lapsed_trial.id)
    assert trial_row.payment_status == "expired"
    assert as_utc(trial_row.expires_at) == NOW
    assert as_utc(trial_row.trial_ends_at) == NOW - timedelta(hours=1)
    assert repo.get_by_id(db_session, stale.id) is None
    assert repo.get_by_id(db_session, recent.id) is not None


def test_list_all_search_and_counts(db_session, make_listing) -> None:
    make_listing(Trial(started=NOW, ends=NOW + timedelta(days=30)), name="Skopje Electric", category="electrician")
    make_listing(Pending(), name="Bitola Plumbing")
    make_listing(Expired(since=NOW))

    found = repo.list_all(db_session, search="ELECTRIC")
    assert [listing.name for listing in found] == ["Skopje Electric"]
    assert len(repo.list_all(db_session, status="pending")) == 1

    counts = repo.count_by_status(db_session)
    assert counts == {"pending": 1, "trial": 1, "paid": 0, "expired": 1, "total": 3}
