#Purpose: Address string -> Coordinate, through an ordered chain of providers.
#Typical responsibilities:
#primary, token-authenticated provider (Mapbox) bounded to one country
#free fallback provider (OSM Nominatim), rate limited to its usage policy
#collect every failed attempt so the final error explains itself
#Output: a Coordinate, or GeocodeUnavailable when the whole chain failed.

import logging
from typing import List, Optional, Sequence, Tuple

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import MapBox, Nominatim

from core.config import CoreSettings
from core.errors import GeocodeUnavailable, ValidationError
from routing.models import Coordinate

logger = logging.getLogger(__name__)


class GeocodingProviderError(Exception):
    """One provider failed for one address. The resolver moves on to the next one."""
    pass


class GeocodingStrategy:
    """
    One link of the fallback chain. Subclasses turn an address into a
    Coordinate or raise GeocodingProviderError.
    """
    name = "geocoder"

    def geocode(self, address: str) -> Coordinate:
        raise NotImplementedError

    def _to_coordinate(self, location) -> Coordinate:
        if location is None:
            raise GeocodingProviderError("no result")
        try:
            return Coordinate(latitude=float(location.latitude), longitude=float(location.longitude))
        except (TypeError, ValueError, ValidationError) as exc:
            raise GeocodingProviderError(f"unusable coordinates: {exc}") from exc


class MapboxGeocoder(GeocodingStrategy):
    """
    Primary provider. Needs an access token; results are bounded to
    `country` for precision (e.g. "zw").
    """
    name = "mapbox"

    def __init__(self, access_token: str, country: Optional[str] = None, timeout: float = 10, geolocator=None):
        if not access_token and geolocator is None:
            raise ValueError("Mapbox geocoding needs an access token")
        self.country = country
        self.geolocator = geolocator or MapBox(api_key=access_token, timeout=timeout)

    def geocode(self, address: str) -> Coordinate:
        try:
            location = self.geolocator.geocode(address, exactly_one=True, country=self.country)
        except GeopyError as exc:
            raise GeocodingProviderError(f"{type(exc).__name__}: {exc}") from exc
        return self._to_coordinate(location)


class NominatimGeocoder(GeocodingStrategy):
    """
    Free OSM fallback. The public instance allows about one request per
    second, so every call goes through a RateLimiter that serializes
    consecutive requests with min_delay_seconds between them. It is only
    reached when the primary failed or is not configured.
    """
    name = "nominatim"

    def __init__(
        self,
        user_agent: str,
        country: Optional[str] = None,
        timeout: float = 10,
        min_delay_seconds: float = 1.0,
        geolocator=None,
    ):
        self.country = country
        self.geolocator = geolocator or Nominatim(user_agent=user_agent, timeout=timeout)
        self._geocode = RateLimiter(
            self.geolocator.geocode,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )

    def geocode(self, address: str) -> Coordinate:
        try:
            location = self._geocode(address, exactly_one=True, country_codes=self.country)
        except GeopyError as exc:
            raise GeocodingProviderError(f"{type(exc).__name__}: {exc}") from exc
        return self._to_coordinate(location)


class GeocodingResolver:
    """
    Iterates the providers in order until one returns a coordinate.
    """

    def __init__(self, providers: Sequence[GeocodingStrategy]):
        self.providers = list(providers)

    def resolve(self, address: str) -> Coordinate:
        if not address or not address.strip():
            raise ValidationError("address must not be blank", field="address")

        address = address.strip()
        attempts: List[Tuple[str, str]] = []

        for provider in self.providers:
            try:
                coordinate = provider.geocode(address)
            except GeocodingProviderError as exc:
                logger.warning("Geocoder %s failed for '%s': %s", provider.name, address, exc)
                attempts.append((provider.name, str(exc)))
                continue

            if attempts:
                logger.info("Resolved '%s' via fallback geocoder %s", address, provider.name)
            return coordinate

        logger.error("All geocoders failed for '%s'", address)
        raise GeocodeUnavailable(address, attempts)


def build_geocoding_resolver(settings: CoreSettings) -> GeocodingResolver:
    """
    Mapbox first when a token is configured, Nominatim always last.
    """
    providers: List[GeocodingStrategy] = []

    if settings.mapbox_access_token:
        providers.append(
            MapboxGeocoder(
                settings.mapbox_access_token,
                country=settings.geocoding_country,
                timeout=settings.external_timeout_seconds,
            )
        )
    else:
        logger.warning("MAPBOX_ACCESS_TOKEN not set, geocoding uses the rate-limited Nominatim fallback only")

    providers.append(
        NominatimGeocoder(
            settings.nominatim_user_agent,
            country=settings.geocoding_country,
            timeout=settings.external_timeout_seconds,
            min_delay_seconds=settings.nominatim_min_delay_seconds,
        )
    )
    return GeocodingResolver(providers)
