"""
Purpose: Process configuration for the logistics core.
What it does:

Reads provider credentials and timeouts from the environment (a .env file is
loaded first, as the OSRM client always did) into one frozen CoreSettings object
that is passed explicitly to build_core().

Example .env:
OSRM_BASE_URL=http://router.project-osrm.org
MAPBOX_ACCESS_TOKEN=pk....
GEOCODING_COUNTRY=zw
PAYNOW_INTEGRATION_ID=1234
PAYNOW_INTEGRATION_KEY=xxxxxxxx
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class CoreSettings:
    """
    Everything the core needs to talk to the outside world.
    Missing credentials switch the matching provider off instead of failing.
    """

    # --- Road routing (OSRM) ---
    osrm_base_url: Optional[str] = None
    osrm_profile: str = "driving"

    # --- Geocoding ---
    # Primary provider is only used when a token is present.
    mapbox_access_token: Optional[str] = None
    # ISO 3166-1 alpha-2 code the primary geocoder is bounded to.
    geocoding_country: Optional[str] = None
    nominatim_user_agent: str = "parcelcore-geocoder"
    # OSM usage policy: at most one request per second.
    nominatim_min_delay_seconds: float = 1.0

    # --- Every outbound call is bounded by this ---
    external_timeout_seconds: float = 10.0

    # --- Payment provider (Paynow) ---
    paynow_integration_id: Optional[str] = None
    paynow_integration_key: Optional[str] = None
    paynow_return_url: str = "http://localhost:8000/payments/return"
    paynow_result_url: str = "http://localhost:8000/api/v1/payments/callback/"
    paynow_auth_email: Optional[str] = None

    @property
    def paynow_configured(self) -> bool:
        return bool(self.paynow_integration_id and self.paynow_integration_key)

    def validate(self) -> None:
        """
        Basic sanity checks. Call once at startup.
        """
        if self.external_timeout_seconds <= 0:
            raise ValueError("external_timeout_seconds must be > 0")

        if self.nominatim_min_delay_seconds < 0:
            raise ValueError("nominatim_min_delay_seconds must be >= 0")

        if self.geocoding_country is not None and len(self.geocoding_country) != 2:
            raise ValueError("geocoding_country must be a two-letter country code")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> CoreSettings:
        if dotenv:
            load_dotenv()

        settings = cls(
            osrm_base_url=_optional("OSRM_BASE_URL"),
            osrm_profile=os.getenv("OSRM_PROFILE", "driving"),
            mapbox_access_token=_optional("MAPBOX_ACCESS_TOKEN"),
            geocoding_country=_optional("GEOCODING_COUNTRY"),
            nominatim_user_agent=os.getenv("NOMINATIM_USER_AGENT", "parcelcore-geocoder"),
            nominatim_min_delay_seconds=float(os.getenv("NOMINATIM_MIN_DELAY_SECONDS", "1.0")),
            external_timeout_seconds=float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "10")),
            paynow_integration_id=_optional("PAYNOW_INTEGRATION_ID"),
            paynow_integration_key=_optional("PAYNOW_INTEGRATION_KEY"),
            paynow_return_url=os.getenv("PAYNOW_RETURN_URL", cls.paynow_return_url),
            paynow_result_url=os.getenv("PAYNOW_RESULT_URL", cls.paynow_result_url),
            paynow_auth_email=_optional("PAYNOW_AUTH_EMAIL"),
        )
        settings.validate()
        return settings
