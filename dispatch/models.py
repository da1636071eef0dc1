"""
Purpose: The Assignment record that binds one parcel to one driver.
A parcel has at most one assignment, ever; creating it is the exclusivity
critical step of the dispatch protocol.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class AssignmentStatus(str, Enum):
    PENDING = "pending"       # driver holds the parcel
    COMPLETED = "completed"   # parcel delivered
    CANCELLED = "cancelled"   # parcel failed or returned


@dataclass(frozen=True)
class Assignment:
    id: str
    parcel_id: str
    driver_id: str
    assigned_by: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    assigned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.PENDING

    @staticmethod
    def new(parcel_id: str, driver_id: str, assigned_by: str) -> Assignment:
        return Assignment(
            id=str(uuid.uuid4()),
            parcel_id=parcel_id,
            driver_id=driver_id,
            assigned_by=str(assigned_by),
        )
