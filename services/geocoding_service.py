"""Address geocoding backed by OpenStreetMap Nominatim."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.env import env_float, env_str
from core.logging import get_logger
from services.listing_errors import TransientDependencyError
from services.listing_repository import GeoPoint

logger = get_logger(__name__)

DEFAULT_NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_USER_AGENT = "EasyFix/1.0 (support@easyfix.services)"


def _coerce_coordinate(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class NominatimGeocoder:
    base_url: str = DEFAULT_NOMINATIM_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 9.0

    @classmethod
    def from_env(cls) -> "NominatimGeocoder":
        return cls(
            base_url=env_str("NOMINATIM_URL", DEFAULT_NOMINATIM_URL) or DEFAULT_NOMINATIM_URL,
            user_agent=env_str("NOMINATIM_USER_AGENT", DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
            timeout=env_float("EXTERNAL_TIMEOUT_SECONDS", 9.0, minimum=1.0),
        )

    def geocode(self, *, address: str, city: str, country: str) -> Optional[GeoPoint]:
        """
        Resolve ``address, city`` within ``country`` to a coordinate.

        Returns None when the provider has no match. Network failures and
        provider-side errors raise TransientDependencyError.
        """
        query = ", ".join(part for part in (address.strip(), city.strip()) if part)
        if not query:
            return None
        params = {
            "format": "jsonv2",
            "limit": 1,
            "addressdetails": 0,
            "countrycodes": (country or "").lower(),
            "q": query,
        }
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.base_url, params=params, headers=headers)
        except httpx.RequestError as exc:
            logger.warning("Geocoding request failed: %s", exc)
            raise TransientDependencyError("geocoder", "Location service is unavailable. Please try again.") from exc

        if response.status_code >= 500:
            logger.warning("Geocoding provider error %s for '%s'.", response.status_code, query)
            raise TransientDependencyError("geocoder", "Location service is unavailable. Please try again.")
        if response.status_code != 200:
            logger.info("Geocoding returned %s for '%s'.", response.status_code, query)
            return None
        try:
            results = response.json()
        except ValueError:
            logger.warning("Geocoding response was not JSON for '%s'.", query)
            return None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            return None

        latitude = _coerce_coordinate(results[0].get("lat"))
        longitude = _coerce_coordinate(results[0].get("lon"))
        if latitude is None or longitude is None:
            return None
        return GeoPoint(latitude=latitude, longitude=longitude)


__all__ = ["NominatimGeocoder"]
