"""
Purpose: Courier records for the dispatch core.
What it does:
A Driver profile (vehicle, availability, last known position) as an immutable
record; updates go through dataclasses.replace and the store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from routing.models import Coordinate


class DriverStatus(str, Enum):
    """
    AVAILABLE and OFFLINE are chosen by the driver.
    BUSY is only ever set by the assignment protocol and cleared when the
    assigned parcel reaches a terminal status.
    """
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


@dataclass(frozen=True)
class Driver:
    """
    One courier profile, keyed by id and owned by exactly one user account.
    """
    id: str
    user_id: str
    status: DriverStatus = DriverStatus.OFFLINE

    license_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_plate: Optional[str] = None
    current_location: Optional[Coordinate] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def new(
        cls,
        user_id,
        status: str | DriverStatus = DriverStatus.OFFLINE,
        license_number: Optional[str] = None,
        vehicle_type: Optional[str] = None,
        vehicle_plate: Optional[str] = None,
        driver_id: Optional[str] = None,
    ) -> Driver:
        if isinstance(status, str):
            status = DriverStatus(status)

        return cls(
            id=driver_id or str(uuid.uuid4()),
            user_id=str(user_id),
            status=status,
            license_number=license_number,
            vehicle_type=vehicle_type,
            vehicle_plate=vehicle_plate,
        )


@dataclass(frozen=True)
class DriverProfileUpdate:
    """
    Explicit profile edit: None means "leave unchanged".
    """
    license_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_plate: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.license_number is None and self.vehicle_type is None and self.vehicle_plate is None
