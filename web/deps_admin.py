"""Admin authentication dependencies."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import HTTPException, Request, status

from core.env import env_str
from core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdminSession:
    """Represents a validated administrator credential."""

    actor: str
    issued_at: datetime
    token_hint: Optional[str] = None


def _forbidden(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": code, "message": message})


def _mask_token(token: str) -> str:
    if not token:
        return ""
    if len(token) <= 4:
        return "*" * len(token)
    return f"{token[:2]}***{token[-2:]}"


def load_admin_token_map() -> Dict[str, str]:
    """Parse ``ADMIN_API_TOKENS`` (``actor:token`` entries) and ``ADMIN_API_TOKEN``."""
    mapping: Dict[str, str] = {}
    tokens_env = env_str("ADMIN_API_TOKENS")
    default_actor = env_str("ADMIN_API_ACTOR", "admin") or "admin"

    if tokens_env:
        for entry in tokens_env.split(","):
            entry = entry.strip()
            if not entry:
                continue
            actor: Optional[str] = None
            token: Optional[str] = None
            if ":" in entry:
                actor, token = entry.split(":", 1)
            elif "=" in entry:
                actor, token = entry.split("=", 1)
            else:
                token = entry
            actor = (actor or default_actor).strip() or "admin"
            token = (token or "").strip()
            if token:
                mapping[token] = actor

    single_token = env_str("ADMIN_API_TOKEN")
    if single_token:
        mapping[single_token.strip()] = default_actor

    return mapping


def _extract_admin_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        candidate = auth_header[7:].strip()
        if candidate:
            return candidate
    header_token = request.headers.get("x-admin-token")
    if header_token:
        return header_token.strip()
    return None


def _match_actor(token_map: Dict[str, str], provided: str) -> Optional[str]:
    for token, actor in token_map.items():
        if hmac.compare_digest(token.encode("utf-8"), provided.encode("utf-8")):
            return actor
    return None


def require_admin_session(request: Request) -> AdminSession:
    """
    Validate that the current request carries a recognised admin token.

    Accepted credentials, in order:
    1. Authorization: Bearer <token>
    2. X-Admin-Token header
    """
    error_code = "admin.unauthorized"
    token_map = load_admin_token_map()
    if not token_map:
        logger.error("ADMIN_API_TOKEN or ADMIN_API_TOKENS is not configured; admin access blocked.")
        raise _forbidden(error_code, "Admin access is not configured.")

    provided = _extract_admin_token(request)
    if not provided:
        logger.warning("Admin access denied: missing credential.")
        raise _forbidden(error_code, "Admin credentials are required.")

    actor = _match_actor(token_map, provided)
    if not actor:
        logger.warning("Admin access denied: invalid token %s.", _mask_token(provided))
        raise _forbidden(error_code, "Admin token is not valid.")

    session = AdminSession(
        actor=actor,
        issued_at=datetime.now(timezone.utc),
        token_hint=_mask_token(provided),
    )
    request.state.admin_session = session
    return session


__all__ = ["AdminSession", "load_admin_token_map", "require_admin_session"]
