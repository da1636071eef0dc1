#Purpose: Route distance estimation for pricing and ETA.
#Returns the distance/duration between two coordinates with degrading fidelity:
#1. OSRM /route driving distance + duration
#2. great-circle distance when OSRM is unavailable (duration unknown)
#It never fails: pricing must stay available during a routing outage, at the
#cost of under-estimating road distance on the fallback path.

import logging
from typing import Optional

from geopy.distance import great_circle

from core.config import CoreSettings
from routing.models import Coordinate, DistanceResult, DistanceSource
from routing.osrm_client import OSRMClient, OSRMError

logger = logging.getLogger(__name__)


def straight_line_distance_km(pickup: Coordinate, delivery: Coordinate) -> float:
    """Great-circle distance on a spherical earth, in km."""
    return great_circle(pickup.as_lat_lon(), delivery.as_lat_lon()).km


class RouteDistanceEstimator:
    """
    Coordinate pair -> DistanceResult.
    osrm may be None (not configured), in which case every estimate is straight-line.
    """

    def __init__(self, osrm: Optional[OSRMClient] = None):
        self.osrm = osrm

    def estimate(self, pickup: Coordinate, delivery: Coordinate) -> DistanceResult:
        if self.osrm is not None:
            try:
                route = self.osrm.compute_route([pickup.as_lat_lon(), delivery.as_lat_lon()])
            except (OSRMError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Road routing unavailable, falling back to straight-line distance: %s", exc)
            else:
                return DistanceResult(
                    distance_km=round(route["distance"] / 1000.0, 1),
                    duration_minutes=round(route["duration"] / 60.0, 1),
                    source=DistanceSource.ROAD,
                )

        return DistanceResult(
            distance_km=round(straight_line_distance_km(pickup, delivery), 1),
            duration_minutes=None,
            source=DistanceSource.STRAIGHT_LINE,
        )


def build_distance_estimator(settings: CoreSettings) -> RouteDistanceEstimator:
    if not settings.osrm_base_url:
        logger.warning("OSRM_BASE_URL not set, distances are straight-line estimates")
        return RouteDistanceEstimator(osrm=None)

    return RouteDistanceEstimator(
        OSRMClient(
            settings.osrm_base_url,
            profile=settings.osrm_profile,
            timeout=settings.external_timeout_seconds,
        )
    )
