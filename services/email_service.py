"""Transactional email for listing owners (reminders, notices, self-service links)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Protocol

import httpx
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from core.env import env_float, env_str
from core.logging import get_logger
from services.listing_errors import TransientDependencyError

logger = get_logger(__name__)

REPO_ROOT = Path(__file__).resolve().parent.parent
EMAIL_TEMPLATE_DIR = REPO_ROOT / "templates" / "email"
DEFAULT_RESEND_API_URL = "https://api.resend.com/emails"

BRAND_NAME = env_str("APP_BRAND_NAME") or "EasyFix"

_ENV: Optional[Environment] = None


class Mailer(Protocol):
    def send(self, *, to: str, subject: str, text: str, html: str) -> None:
        ...


@dataclass
class ResendMailer:
    """Delivers mail through the Resend HTTP API."""

    api_key: str
    sender: str
    reply_to: Optional[str] = None
    api_url: str = DEFAULT_RESEND_API_URL
    timeout: float = 9.0

    @classmethod
    def from_env(cls) -> Optional["ResendMailer"]:
        api_key = env_str("RESEND_API_KEY")
        sender = env_str("RESEND_FROM")
        if not api_key or not sender:
            logger.info("Resend is not configured; listing emails are disabled.")
            return None
        return cls(
            api_key=api_key,
            sender=sender,
            reply_to=env_str("RESEND_REPLY_TO"),
            api_url=env_str("RESEND_API_URL", DEFAULT_RESEND_API_URL) or DEFAULT_RESEND_API_URL,
            timeout=env_float("EXTERNAL_TIMEOUT_SECONDS", 9.0, minimum=1.0),
        )

    def send(self, *, to: str, subject: str, text: str, html: str) -> None:
        payload: Dict[str, object] = {"from": self.sender, "to": [to], "subject": subject, "text": text, "html": html}
        if self.reply_to:
            payload["reply_to"] = self.reply_to
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Resend HTTP error for %s: %s", to, exc.response.text)
            raise TransientDependencyError("mailer", "Email could not be sent.") from exc
        except httpx.RequestError as exc:
            logger.warning("Resend request error for %s: %s", to, exc)
            raise TransientDependencyError("mailer", "Email service is unavailable.") from exc


def _get_env() -> Environment:
    global _ENV  # pylint: disable=global-statement
    if _ENV is None:
        _ENV = Environment(
            loader=FileSystemLoader(EMAIL_TEMPLATE_DIR),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _ENV


def _render_template(template: str, context: Dict[str, object]) -> str:
    env = _get_env()
    try:
        return env.get_template(template).render(brand_name=BRAND_NAME, **context)
    except TemplateNotFound:
        logger.error("Email template %s not found.", template)
        return ""


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M UTC")


def send_delete_confirmation(
    mailer: Mailer,
    *,
    email: str,
    confirm_url: str,
    ttl_hours: int,
    reason: Optional[str] = None,
) -> None:
    context = {"confirm_url": confirm_url, "ttl_hours": ttl_hours, "reason": reason}
    html = _render_template("listing_delete_confirm.html.jinja", context)
    text = (
        f"We received a request to delete your {BRAND_NAME} listing.\n"
        f"Confirm within {ttl_hours} hours: {confirm_url}\n"
        "If you did not request this, ignore this email."
    )
    if reason:
        text += f"\nReason: {reason}"
    mailer.send(to=email, subject=f"{BRAND_NAME} - Confirm data deletion", text=text, html=html)


def send_pay_link(mailer: Mailer, *, email: str, pay_url: str, ttl_minutes: int) -> None:
    context = {"pay_url": pay_url, "ttl_minutes": ttl_minutes}
    html = _render_template("listing_pay_link.html.jinja", context)
    text = f"Continue to payment for your {BRAND_NAME} listing (valid {ttl_minutes} minutes): {pay_url}"
    mailer.send(to=email, subject=f"{BRAND_NAME} - Pay now link", text=text, html=html)


def send_window_reminder(
    mailer: Mailer,
    *,
    email: str,
    kind: str,
    days_left: int,
    ends_at: Optional[datetime],
    pay_url: str,
) -> None:
    """Remind an owner that their ``kind`` ("trial" or "subscription") window closes soon."""
    label = "Trial" if kind == "trial" else "Subscription"
    when = "tomorrow" if days_left <= 1 else f"in {days_left} days"
    context = {"label": label, "when": when, "ends_at": _format_date(ends_at), "pay_url": pay_url}
    html = _render_template("listing_reminder.html.jinja", context)
    text = f"Your {label.lower()} ends {when} ({_format_date(ends_at)}). To stay listed: {pay_url}"
    mailer.send(to=email, subject=f"{BRAND_NAME} - {label} ends {when}", text=text, html=html)


def send_deactivation_notice(mailer: Mailer, *, email: str, pay_url: str) -> None:
    html = _render_template("listing_deactivated.html.jinja", {"pay_url": pay_url})
    text = f"Your {BRAND_NAME} listing is no longer active. To be listed again: {pay_url}"
    mailer.send(to=email, subject=f"{BRAND_NAME} - Listing deactivated", text=text, html=html)


__all__ = [
    "Mailer",
    "ResendMailer",
    "send_deactivation_notice",
    "send_delete_confirmation",
    "send_pay_link",
    "send_window_reminder",
]
