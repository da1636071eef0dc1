#Purpose: Road distance between a pickup and a delivery point, from OSRM.
#Only speaks HTTP to the /route service:
#coordinates go out as lon,lat pairs
#distance (meters) and duration (seconds) come back as plain floats
#any transport, timeout or payload problem becomes OSRMError
#Falling back to a straight line is route_service's job, not this module's.

import logging
from typing import Dict, List, Optional, Tuple

import requests

logger = logging.getLogger(__name__)

# Internal coordinate type: (lat, lon)
LatLon = Tuple[float, float]


class OSRMError(Exception):
    """Raised when OSRM cannot produce a usable route."""
    pass


class OSRMClient:
    """
    One OSRM server, one routing profile. Callers pass (lat, lon) pairs;
    compute_route handles the lon,lat ordering OSRM expects.
    """
    def __init__(self, base_url: Optional[str], profile: str = "driving", timeout: float = 10):
        if not base_url:
            raise ValueError("OSRM base URL not set. Please set OSRM_BASE_URL in the .env file.")

        self.base_url = base_url.rstrip("/")
        self.timeout = timeout #the time to wait for a response from OSRM before giving up
        self.profile = profile #the mode of transportation (driving, walking, cycling)

    def format_coordinates(self, coords: List[LatLon]) -> str:
        """Convert list of (lat, lon) to OSRM format 'lon,lat;lon,lat;...'"""
        return ';'.join([f"{lon},{lat}" for lat, lon in coords])

    def compute_route(self, coordinates: List[LatLon]) -> Dict[str, float]:
        """
        calls the OSRM /route endpoint with the given coordinates and
        returns a dict with distance and duration

        Returns:
            {
                "distance": float, # in meters
                "duration": float, # in seconds
            }

        Raises:
            OSRMError on transport failure, timeout, non-Ok code or an empty route list.
        """
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        url = f"{self.base_url}/route/v1/{self.profile}/{self.format_coordinates(coordinates)}"

        try:
            response = requests.get(
                url,
                params={
                    "overview": "false", # we don't need the geometry of the route
                },
                timeout=self.timeout,
            )
            data = response.json() #OSRM answers JSON even for 4xx errors
        except requests.RequestException as exc:
            raise OSRMError(f"OSRM request failed: {exc}") from exc
        except ValueError as exc:
            raise OSRMError(f"OSRM returned a non-JSON body (HTTP {response.status_code})") from exc

        #validating OSRM response
        if data.get("code") != "Ok":
            raise OSRMError(f"OSRM error: {data.get('message', data.get('code', 'Unknown error'))}")

        routes = data.get("routes") or []
        if not routes:
            raise OSRMError("OSRM returned no routes")

        route = routes[0] #take the first route (OSRM may return alternatives)
        logger.debug("OSRM route %s: %.0fm / %.0fs", url, route["distance"], route["duration"])

        #Normalize output to internal format
        return {
            "distance": float(route["distance"]),
            "duration": float(route["duration"]),
        }
