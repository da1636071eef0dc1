"""
Purpose: Value types passed between the geocoder, the distance estimator and pricing.
Rule: No HTTP calls here. Models only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from core.errors import ValidationError

LatLon = Tuple[float, float]


@dataclass(frozen=True)
class Coordinate:
    """
    A point on the globe. Produced by the geocoding resolver, consumed by the
    distance estimator. Out-of-range values are rejected at construction.
    """

    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValidationError(f"latitude {self.latitude} out of range", field="latitude")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValidationError(f"longitude {self.longitude} out of range", field="longitude")

    def as_lat_lon(self) -> LatLon:
        return (self.latitude, self.longitude)


class DistanceSource(str, Enum):
    ROAD = "road"
    STRAIGHT_LINE = "straight_line"


@dataclass(frozen=True)
class DistanceResult:
    """
    duration_minutes is None when the straight-line fallback was used;
    consumers must treat that as a lower-confidence estimate.
    """

    distance_km: float
    duration_minutes: Optional[float] = None
    source: DistanceSource = DistanceSource.ROAD

    @property
    def is_fallback(self) -> bool:
        return self.duration_minutes is None
