#Marks routing as a package.
#Re-exports the public APIs (geocoding resolver, distance estimator, ETA policy)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .eta_service import DeliveryEstimatePolicy, estimate_delivery_date
from .geocoding import GeocodingResolver, build_geocoding_resolver
from .models import Coordinate, DistanceResult
from .osrm_client import OSRMClient
from .route_service import RouteDistanceEstimator, build_distance_estimator

__all__ = [
    "Coordinate",
    "DeliveryEstimatePolicy",
    "DistanceResult",
    "GeocodingResolver",
    "OSRMClient",
    "RouteDistanceEstimator",
    "build_distance_estimator",
    "build_geocoding_resolver",
    "estimate_delivery_date",
]
