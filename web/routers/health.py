"""Health-related API endpoints."""

from __future__ import annotations

from typing import Optional, Tuple

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from database import SessionLocal
from web.deps import get_mailer

router = APIRouter(prefix="/health", tags=["Health"])


def ping_database() -> Tuple[bool, Optional[str]]:
    """Return database connectivity status and optional error message."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)
    finally:
        db.close()


@router.get(
    "/status",
    summary="Service runtime status",
    description="Database connectivity, mail configuration and expiry sweeper state.",
)
def read_service_status(request: Request):
    db_ok, db_error = ping_database()
    status = "ok" if db_ok else "degraded"
    payload = {"status": status, "database": {"ok": db_ok}, "mailer": {"configured": get_mailer() is not None}}
    if db_error:
        payload["database"]["error"] = db_error

    sweeper = getattr(request.app.state, "sweeper", None)
    sweeper_payload = {"running": False, "busy": False, "lastReport": None}
    if sweeper is not None:
        sweeper_payload["running"] = sweeper.running
        sweeper_payload["busy"] = sweeper.busy
        if sweeper.last_report is not None:
            sweeper_payload["lastReport"] = sweeper.last_report.as_dict()
    payload["sweeper"] = sweeper_payload
    return payload


__all__ = ["router", "ping_database"]
