from .driver_state import handle_availability_change, handle_driver_assignment, handle_driver_release
from .parcel_state import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    can_transition,
    check_status_writer,
    close_assignment,
    transition_parcel,
)

__all__ = [
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "can_transition",
    "check_status_writer",
    "close_assignment",
    "handle_availability_change",
    "handle_driver_assignment",
    "handle_driver_release",
    "transition_parcel",
]
