"""Periodic enforcement of time-based listing transitions and retention."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from core.listing_settings import ListingSettings, get_listing_settings
from core.logging import get_logger
from services import listing_notifications
from services import listing_repository as repo
from services.email_service import Mailer
from services.listing_lifecycle import Clock, utcnow
from services.listing_states import as_utc

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class SweepReport:
    started_at: datetime
    skipped: bool = False
    counts: Dict[str, int] = field(default_factory=dict)
    failed_steps: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped and not self.failed_steps

    def as_dict(self) -> Dict[str, object]:
        return {
            "startedAt": self.started_at.isoformat(),
            "skipped": self.skipped,
            "counts": dict(self.counts),
            "failedSteps": list(self.failed_steps),
        }


class ExpirySweeper:
    """
    Runs the sweep on a fixed interval in a background thread.

    ``tick`` is also callable directly (admin endpoint, Celery task). Only one
    tick runs at a time; a tick that finds another in flight is skipped.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        settings: Optional[ListingSettings] = None,
        mailer: Optional[Mailer] = None,
        clock: Clock = utcnow,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_listing_settings()
        self.mailer = mailer
        self.clock = clock
        self.interval_seconds = interval_seconds or self.settings.check_interval_seconds
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="listing-sweeper", daemon=True)
        self._thread.start()
        logger.info("Listing sweeper started (interval=%ss).", int(self.interval_seconds))

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None
        logger.info("Listing sweeper stopped.")

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Listing sweep tick crashed; retrying next interval.")
            self._stop.wait(self.interval_seconds)

    def _step(self, report: SweepReport, name: str, action: Callable[[Session], int]) -> None:
        session = self.session_factory()
        try:
            report.counts[name] = action(session)
            session.commit()
        except Exception:
            session.rollback()
            report.failed_steps.append(name)
            logger.exception("Listing sweep step '%s' failed; retrying next interval.", name)
        finally:
            session.close()

    def tick(self) -> SweepReport:
        now = as_utc(self.clock()) or utcnow()
        report = SweepReport(started_at=now)
        if not self._in_flight.acquire(blocking=False):
            logger.info("Listing sweep already in flight; skipping this tick.")
            report.skipped = True
            return report
        try:
            cutoff = now - timedelta(days=self.settings.delete_after_days)
            if self.mailer is not None:
                mailer = self.mailer
                self._step(
                    report,
                    "reminders",
                    lambda db: listing_notifications.send_due_reminders(db, mailer, now=now, settings=self.settings),
                )
            self._step(report, "paid_expired", lambda db: repo.expire_lapsed_paid(db, now))
            self._step(report, "trial_expired", lambda db: repo.expire_lapsed_trials(db, now))
            self._step(report, "purged", lambda db: repo.purge_expired(db, cutoff))
            if self.mailer is not None:
                mailer = self.mailer
                self._step(
                    report,
                    "deactivation_notices",
                    lambda db: listing_notifications.send_deactivation_notices(db, mailer, now=now, settings=self.settings),
                )
        finally:
            self._in_flight.release()

        self.last_report = report
        if report.failed_steps:
            logger.warning("Listing sweep finished with failures: %s", report.failed_steps)
        else:
            logger.info("Listing sweep finished: %s", report.counts)
        return report


__all__ = ["ExpirySweeper", "SweepReport"]
