from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError

from services import listing_repository as repo
from services.listing_states import Expired, Paid, Trial, as_utc
from services.maintenance import listing_sweeper
from services.maintenance.listing_sweeper import ExpirySweeper

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _sweeper(session_factory, settings, clock, mailer=None) -> ExpirySweeper:
    return ExpirySweeper(session_factory, settings=settings, mailer=mailer, clock=clock, interval_seconds=3600)


def test_tick_expires_and_purges(db_session, session_factory, settings, clock, make_listing) -> None:
    paid = make_listing(Paid(since=NOW - timedelta(days=31), until=NOW - timedelta(days=1)))
    trial = make_listing(Trial(started=NOW - timedelta(days=130), ends=NOW - timedelta(days=2)))
    stale = make_listing(Expired(since=NOW - timedelta(days=200)))
    recent = make_listing(Expired(since=NOW - timedelta(days=10)))
    live = make_listing(Trial(started=NOW, ends=NOW + timedelta(days=60)))

    report = _sweeper(session_factory, settings, clock).tick()

    assert report.ok
    assert report.counts == {"paid_expired": 1, "trial_expired": 1, "purged": 1}
    assert repo.get_by_id(db_session, paid.id).payment_status == "expired"
    trial_row = repo.get_by_id(db_session, trial.id)
    assert trial_row.payment_status == "expired"
    assert as_utc(trial_row.expires_at) == NOW
    assert repo.get_by_id(db_session, stale.id) is None
    assert repo.get_by_id(db_session, recent.id) is not None
    assert repo.get_by_id(db_session, live.id).payment_status == "trial"


def test_trial_expired_by_sweep_is_purged_after_retention(db_session, session_factory, settings, clock, make_listing) -> None:
    listing = make_listing(Trial(started=NOW - timedelta(days=130), ends=NOW - timedelta(hours=1)))
    sweeper = _sweeper(session_factory, settings, clock)

    sweeper.tick()
    clock.advance(days=179)
    assert sweeper.tick().counts["purged"] == 0
    clock.advance(days=1)
    assert sweeper.tick().counts["purged"] == 1

    assert repo.get_by_id(db_session, listing.id) is None


def test_overlapping_tick_is_skipped(session_factory, settings, clock) -> None:
    sweeper = _sweeper(session_factory, settings, clock)
    sweeper._in_flight.acquire()
    try:
        report = sweeper.tick()
    finally:
        sweeper._in_flight.release()

    assert report.skipped
    assert report.counts == {}


def test_failed_step_does_not_block_later_steps(monkeypatch, session_factory, settings, clock, make_listing, db_session) -> None:
    stale = make_listing(Expired(since=NOW - timedelta(days=365)))

    def _broken(db, now):
        raise OperationalError("UPDATE listings", {}, Exception("database is locked"))

    monkeypatch.setattr(listing_sweeper.repo, "expire_lapsed_paid", _broken)

    report = _sweeper(session_factory, settings, clock).tick()

    assert report.failed_steps == ["paid_expired"]
    assert report.counts["purged"] == 1
    assert repo.get_by_id(db_session, stale.id) is None


def test_reminders_and_deactivation_notices(db_session, session_factory, settings, clock, mailer, make_listing) -> None:
    week_left = make_listing(Trial(started=NOW - timedelta(days=113), ends=NOW + timedelta(days=7, hours=2)))
    day_left = make_listing(Paid(since=NOW - timedelta(days=29), until=NOW + timedelta(hours=20)))
    lapsed = make_listing(Paid(since=NOW - timedelta(days=31), until=NOW - timedelta(hours=1)))
    deleted = make_listing(Expired(since=NOW - timedelta(days=1)), deleted_at=NOW - timedelta(days=1))
    sweeper = _sweeper(session_factory, settings, clock, mailer=mailer)

    report = sweeper.tick()

    recipients = sorted(message["to"] for message in mailer.sent)
    assert recipients == sorted([week_left.email, day_left.email, lapsed.email])
    assert report.counts["reminders"] == 2
    assert report.counts["deactivation_notices"] == 1
    assert repo.get_by_id(db_session, week_left.id).trial_reminder_7d_sent_at is not None
    assert repo.get_by_id(db_session, day_left.id).paid_reminder_1d_sent_at is not None
    assert repo.get_by_id(db_session, deleted.id).expired_notice_sent_at is not None

    mailer.sent.clear()
    sweeper.tick()
    assert mailer.sent == []


def test_start_and_stop_background_thread(session_factory, settings, clock) -> None:
    sweeper = _sweeper(session_factory, settings, clock)
    ran = threading.Event()
    original_tick = sweeper.tick

    def _tick():
        report = original_tick()
        ran.set()
        return report

    sweeper.tick = _tick  # type: ignore[method-assign]
    sweeper.start()
    try:
        assert ran.wait(timeout=5)
        assert sweeper.running
    finally:
        sweeper.stop()

    assert not sweeper.running
    assert sweeper.last_report is not None


class _ExplodingMailer:
    def send(self, *, to: str, subject: str, text: str, html: str) -> None:
        raise RuntimeError("mail relay rejected the message")


def test_mailer_crash_does_not_block_expiry_and_purge(session_factory, settings, clock, make_listing, db_session) -> None:
    reminded = make_listing(Trial(started=NOW - timedelta(days=113), ends=NOW + timedelta(days=7, hours=2)))
    lapsed = make_listing(Paid(since=NOW - timedelta(days=31), until=NOW - timedelta(days=1)))
    stale = make_listing(Expired(since=NOW - timedelta(days=365)))

    report = _sweeper(session_factory, settings, clock, mailer=_ExplodingMailer()).tick()

    assert report.failed_steps == ["reminders", "deactivation_notices"]
    assert report.counts["paid_expired"] == 1
    assert report.counts["purged"] == 1
    assert repo.get_by_id(db_session, lapsed.id).payment_status == "expired"
    assert repo.get_by_id(db_session, stale.id) is None
    assert repo.get_by_id(db_session, reminded.id).trial_reminder_7d_sent_at is None


def test_background_loop_survives_crashing_tick(session_factory, settings, clock) -> None:
    sweeper = ExpirySweeper(session_factory, settings=settings, clock=clock, interval_seconds=0.01)
    calls = []
    second_call = threading.Event()

    def _tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("unexpected failure")
        second_call.set()

    sweeper.tick = _tick  # type: ignore[method-assign]
    sweeper.start()
    try:
        assert second_call.wait(timeout=5)
        assert sweeper.running
    finally:
        sweeper.stop()
