from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Tuple

from core.actors import Actor, ActorRole
from core.errors import InvalidStatusTransition, StatusUpdateForbidden
from dispatch.models import Assignment, AssignmentStatus
from parcels.models import Parcel, ParcelStatus, StatusHistoryEntry

TERMINAL_STATUSES: FrozenSet[ParcelStatus] = frozenset(
    {ParcelStatus.DELIVERED, ParcelStatus.FAILED, ParcelStatus.RETURNED}
)

_EXCEPTIONAL = {ParcelStatus.FAILED, ParcelStatus.RETURNED}

# created -> picked_up -> in_transit -> out_for_delivery -> delivered,
# and any in-flight status may end in failed or returned.
TRANSITIONS: Dict[ParcelStatus, FrozenSet[ParcelStatus]] = {
    ParcelStatus.CREATED: frozenset({ParcelStatus.PICKED_UP}),
    ParcelStatus.PICKED_UP: frozenset({ParcelStatus.IN_TRANSIT} | _EXCEPTIONAL),
    ParcelStatus.IN_TRANSIT: frozenset({ParcelStatus.OUT_FOR_DELIVERY} | _EXCEPTIONAL),
    ParcelStatus.OUT_FOR_DELIVERY: frozenset({ParcelStatus.DELIVERED} | _EXCEPTIONAL),
    ParcelStatus.DELIVERED: frozenset(),
    ParcelStatus.FAILED: frozenset(),
    ParcelStatus.RETURNED: frozenset(),
}


def can_transition(current: ParcelStatus, new: ParcelStatus) -> bool:
    return ParcelStatus(new) in TRANSITIONS[ParcelStatus(current)]


def check_status_writer(actor: Actor, assignment: Optional[Assignment], driver_id: Optional[str]) -> None:
    """
    Admins may move any parcel. A driver may only move a parcel they hold an
    assignment for. Customers never write status.
    """
    if actor.role == ActorRole.ADMIN:
        return
    if actor.role == ActorRole.DRIVER:
        if assignment is not None and driver_id is not None and assignment.driver_id == driver_id:
            return
        raise StatusUpdateForbidden("Driver does not hold the assignment for this parcel")
    raise StatusUpdateForbidden("Customers cannot change parcel status")


def transition_parcel(
    parcel: Parcel,
    new_status: ParcelStatus,
    *,
    updated_by: str,
    location: Optional[str] = None,
    notes: str = "",
    now: Optional[datetime] = None,
) -> Tuple[Parcel, StatusHistoryEntry]:
    """
    Pure transition: returns the next Parcel and the history row that records it.
    Nothing is written here; raises InvalidStatusTransition for illegal moves,
    including anything out of a terminal status.
    """
    new_status = ParcelStatus(new_status)
    now = now or datetime.now(timezone.utc)

    if parcel.status in TERMINAL_STATUSES:
        raise InvalidStatusTransition(
            f"Parcel {parcel.id} is {parcel.status.value}; no further transitions",
            parcel_id=parcel.id,
        )
    if not can_transition(parcel.status, new_status):
        raise InvalidStatusTransition(
            f"Cannot move parcel {parcel.id} from {parcel.status.value} to {new_status.value}",
            parcel_id=parcel.id,
        )

    location = location or parcel.current_location
    next_parcel = replace(
        parcel,
        status=new_status,
        current_location=location,
        actual_delivery_date=now.date() if new_status == ParcelStatus.DELIVERED else parcel.actual_delivery_date,
        updated_at=now,
    )
    entry = StatusHistoryEntry(
        parcel_id=parcel.id,
        status=new_status,
        updated_by=str(updated_by),
        location=location,
        notes=notes or "",
        timestamp=now,
    )
    return next_parcel, entry


def close_assignment(assignment: Assignment, final_status: ParcelStatus) -> Assignment:
    """
    Terminal parcel status closes the assignment: completed on delivery,
    cancelled on failure or return.
    """
    if ParcelStatus(final_status) == ParcelStatus.DELIVERED:
        return replace(assignment, status=AssignmentStatus.COMPLETED)
    return replace(assignment, status=AssignmentStatus.CANCELLED)
