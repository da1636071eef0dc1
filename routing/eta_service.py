#Purpose: ETA estimation policy.
#Converts routing outputs into the customer-facing estimated delivery date.
#Road duration is preferred when OSRM answered; otherwise the distance drives
#the estimate. Keeps ETA logic separate from route computation.

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from parcels.models import ServiceType


@dataclass(frozen=True)
class DeliveryEstimatePolicy:
    """
    Tunable ETA parameters. No logic beyond sanity checks.
    """

    # Driving time a courier covers in one working day.
    working_hours_per_day: int = 8

    # Floors per service type.
    express_min_days: int = 1
    standard_min_days: int = 2

    # Standard service without a road duration: one day per this many km.
    standard_km_per_day: float = 50.0

    def validate(self) -> None:
        if self.working_hours_per_day <= 0:
            raise ValueError("working_hours_per_day must be > 0")
        if self.express_min_days < 1 or self.standard_min_days < 1:
            raise ValueError("minimum delivery days must be >= 1")
        if self.standard_km_per_day <= 0:
            raise ValueError("standard_km_per_day must be > 0")


def default_estimate_policy() -> DeliveryEstimatePolicy:
    p = DeliveryEstimatePolicy()
    p.validate()
    return p


def delivery_days(
    service_type: ServiceType,
    distance_km: float,
    duration_minutes: Optional[float] = None,
    policy: Optional[DeliveryEstimatePolicy] = None,
) -> int:
    policy = policy or default_estimate_policy()
    minutes_per_day = policy.working_hours_per_day * 60

    if ServiceType(service_type) == ServiceType.EXPRESS:
        if duration_minutes is None:
            return policy.express_min_days
        return max(policy.express_min_days, math.ceil(duration_minutes / minutes_per_day))

    if duration_minutes is not None:
        return max(policy.standard_min_days, math.ceil(duration_minutes / minutes_per_day))
    return max(policy.standard_min_days, math.ceil(distance_km / policy.standard_km_per_day))


def estimate_delivery_date(
    service_type: ServiceType,
    distance_km: float,
    duration_minutes: Optional[float] = None,
    *,
    today: Optional[date] = None,
    policy: Optional[DeliveryEstimatePolicy] = None,
) -> date:
    """today + delivery_days, date precision."""
    today = today or date.today()
    return today + timedelta(days=delivery_days(service_type, distance_km, duration_minutes, policy))
