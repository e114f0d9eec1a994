"""Celery tasks for listing maintenance."""

from __future__ import annotations

from typing import Any, Dict, Optional

import redis
from celery import shared_task

from core.env import env_int, env_str
from core.listing_settings import get_listing_settings
from core.logging import get_logger
from database import SessionLocal
from services.email_service import ResendMailer
from services.listing_lifecycle import utcnow
from services.maintenance.listing_sweeper import ExpirySweeper, SweepReport

logger = get_logger(__name__)

SWEEP_LOCK_NAME = "easyfix:listings-sweep"
SWEEP_LOCK_TIMEOUT_SECONDS = env_int("SWEEP_LOCK_TIMEOUT_SECONDS", 15 * 60, minimum=60)
_REDIS_URL = env_str("SWEEP_LOCK_REDIS_URL") or env_str("CELERY_BROKER_URL", "redis://redis:6379/0")

_CLIENT: Optional[redis.Redis] = None
_SWEEPER: Optional[ExpirySweeper] = None


def _get_client() -> redis.Redis:
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = redis.Redis.from_url(_REDIS_URL, decode_responses=False)
    return _CLIENT


def _get_sweeper() -> ExpirySweeper:
    """One sweeper per worker process so concurrent slots share its in-flight guard."""
    global _SWEEPER
    if _SWEEPER is None:
        _SWEEPER = ExpirySweeper(SessionLocal, settings=get_listing_settings(), mailer=ResendMailer.from_env())
    return _SWEEPER


def _skipped() -> Dict[str, Any]:
    return SweepReport(started_at=utcnow(), skipped=True).as_dict()


@shared_task(name="listings.sweep")
def sweep_listings() -> Dict[str, Any]:
    """Run one expiry sweep unless another worker holds the sweep lock."""
    lock = _get_client().lock(SWEEP_LOCK_NAME, timeout=SWEEP_LOCK_TIMEOUT_SECONDS, blocking=False)
    try:
        acquired = lock.acquire(blocking=False)
    except redis.RedisError:
        logger.exception("Could not reach redis for the sweep lock; skipping this run.")
        return _skipped()
    if not acquired:
        logger.info("Listing sweep lock is held by another worker; skipping this run.")
        return _skipped()

    try:
        report = _get_sweeper().tick()
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            logger.warning("Listing sweep lock expired before release (timeout=%ss).", SWEEP_LOCK_TIMEOUT_SECONDS)

    if report.failed_steps:
        logger.warning("Scheduled listing sweep had failed steps: %s", report.failed_steps)
    return report.as_dict()
