from dataclasses import replace
from datetime import datetime, timezone

from core.errors import DriverBusy, DriverHasActiveAssignment, ValidationError
from drivers.models import Driver, DriverStatus

# Statuses a driver may pick for themselves.
SELF_SERVICE_STATUSES = frozenset({DriverStatus.AVAILABLE, DriverStatus.OFFLINE})


def handle_driver_assignment(driver: Driver) -> Driver:
    """
    Called when a driver receives a parcel (claim or admin assignment).
    An available or offline driver becomes BUSY; a busy driver cannot take a
    second parcel.
    """
    if driver.status == DriverStatus.BUSY:
        raise DriverBusy(f"Driver {driver.id} is busy with another delivery", driver_id=driver.id)

    # Because Driver is a frozen dataclass, we must return a new instance via replace
    return replace(driver, status=DriverStatus.BUSY, updated_at=datetime.now(timezone.utc))


def handle_driver_release(driver: Driver) -> Driver:
    """
    Called when the driver's parcel reaches delivered, failed or returned.
    The driver goes back into the available pool.
    """
    return replace(driver, status=DriverStatus.AVAILABLE, updated_at=datetime.now(timezone.utc))


def handle_availability_change(driver: Driver, new_status, has_active_assignment: bool) -> Driver:
    """
    available <-> offline, chosen by the driver. BUSY is never self-selected,
    and a driver holding an active assignment cannot toggle at all.
    """
    try:
        new_status = DriverStatus(new_status)
    except ValueError as exc:
        raise ValidationError(f"unknown driver status '{new_status}'", field="status") from exc

    if new_status not in SELF_SERVICE_STATUSES:
        raise ValidationError("busy is set by the dispatch protocol, not by the driver", field="status")

    if has_active_assignment or driver.status == DriverStatus.BUSY:
        raise DriverHasActiveAssignment(
            f"Driver {driver.id} holds an active assignment", driver_id=driver.id
        )

    return replace(driver, status=new_status, updated_at=datetime.now(timezone.utc))
