"""Runtime configuration for the listing lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

from core.env import env_bool, env_float, env_int, env_str
from core.listing_constants import ListingPlan

_DEFAULT_FRONTEND_BASE_URL = "https://easyfix.services"


@dataclass(frozen=True)
class ListingSettings:
    trial_months: int = 4
    paid_period_days: int = 30
    delete_after_days: int = 180
    check_interval_minutes: int = 60
    default_country: str = "MK"
    default_phone_prefix: str = "+389"
    near_default_radius_km: float = 25.0
    near_min_radius_km: float = 1.0
    near_max_radius_km: float = 200.0
    pay_token_minutes: int = 30
    delete_token_hours: int = 24
    external_timeout_seconds: float = 9.0
    frontend_base_url: str = _DEFAULT_FRONTEND_BASE_URL
    frontend_success_url: str = f"{_DEFAULT_FRONTEND_BASE_URL}/success.html"
    sweeper_enabled: bool = True
    variant_ids: Dict[ListingPlan, str] = field(default_factory=dict)

    @property
    def check_interval_seconds(self) -> float:
        return float(self.check_interval_minutes * 60)

    def plan_for_variant(self, variant_id: object) -> Optional[ListingPlan]:
        candidate = str(variant_id or "").strip()
        if not candidate:
            return None
        for plan, configured in self.variant_ids.items():
            if configured and configured == candidate:
                return plan
        return None

    def variant_for_plan(self, plan: ListingPlan) -> Optional[str]:
        return self.variant_ids.get(plan) or None

    def frontend_url(self, path: str) -> str:
        return f"{self.frontend_base_url.rstrip('/')}/{path.lstrip('/')}"


def load_listing_settings() -> ListingSettings:
    """Build settings from the environment, falling back to defaults on bad values."""
    base_url = (env_str("FRONTEND_BASE_URL") or _DEFAULT_FRONTEND_BASE_URL).rstrip("/")
    country = (env_str("DEFAULT_COUNTRY") or "MK").upper()
    if len(country) != 2 or not country.isalpha():
        country = "MK"
    return ListingSettings(
        trial_months=env_int("TRIAL_MONTHS", 4, minimum=1),
        paid_period_days=env_int("PAID_PERIOD_DAYS", 30, minimum=1),
        delete_after_days=env_int("DELETE_AFTER_DAYS", 180, minimum=1),
        check_interval_minutes=env_int("CHECK_INTERVAL_MINUTES", 60, minimum=1),
        default_country=country,
        default_phone_prefix=env_str("DEFAULT_PHONE_PREFIX", "+389") or "+389",
        near_default_radius_km=env_float("NEAR_DEFAULT_RADIUS_KM", 25.0, minimum=1.0),
        near_max_radius_km=env_float("NEAR_MAX_RADIUS_KM", 200.0, minimum=1.0),
        pay_token_minutes=env_int("PAY_TOKEN_MINUTES", 30, minimum=1),
        delete_token_hours=env_int("DELETE_TOKEN_HOURS", 24, minimum=1),
        external_timeout_seconds=env_float("EXTERNAL_TIMEOUT_SECONDS", 9.0, minimum=1.0),
        frontend_base_url=base_url,
        frontend_success_url=env_str("FRONTEND_SUCCESS_URL") or f"{base_url}/success.html",
        sweeper_enabled=env_bool("LISTING_SWEEPER_ENABLED", True),
        variant_ids={
            ListingPlan.BASIC: env_str("VARIANT_BASIC", "") or "",
            ListingPlan.STANDARD: env_str("VARIANT_STANDARD", "") or "",
            ListingPlan.PREMIUM: env_str("VARIANT_PREMIUM", "") or "",
        },
    )


@lru_cache(maxsize=1)
def get_listing_settings() -> ListingSettings:
    return load_listing_settings()


__all__ = ["ListingSettings", "get_listing_settings", "load_listing_settings"]
