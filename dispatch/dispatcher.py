"""
Purpose: Orchestrator for the parcel lifecycle (the "glue").
What it does:
Accepts a customer's parcel, prices it through the PricingCalculator, and then
drives the parcel, its single Assignment and the driver's status through the
state machines in dispatch.state_machines.

Every multi-entity write runs inside store.atomic(...) keyed by the parcel and
driver ids, so two drivers accepting the same parcel at the same instant end
with exactly one Assignment: the other gets ParcelAlreadyAssigned (or
ParcelNotAvailable once the winner moved the parcel to picked_up).
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, List, Optional, Tuple

from core.actors import Actor, ActorRole
from core.errors import (
    DriverAlreadyRegistered,
    DriverNotFound,
    InvalidStatusTransition,
    ParcelAlreadyAssigned,
    ParcelNotAvailable,
    ParcelNotFound,
    TrackingIdTaken,
    ValidationError,
)
from dispatch.models import Assignment
from dispatch.notifications import NotificationSink
from dispatch.state_machines import (
    check_status_writer,
    close_assignment,
    handle_availability_change,
    handle_driver_assignment,
    handle_driver_release,
    transition_parcel,
)
from drivers.models import Driver, DriverProfileUpdate, DriverStatus
from parcels.models import NewParcelRequest, Parcel, ParcelStatus, StatusHistoryEntry, utcnow
from parcels.tracking import generate_tracking_id
from pricing.calculator import PricingCalculator
from pricing.models import PriceQuote
from routing.eta_service import DeliveryEstimatePolicy, estimate_delivery_date
from routing.models import Coordinate
from storage.base import LogisticsStore, driver_key, parcel_key

logger = logging.getLogger(__name__)

MAX_TRACKING_ID_ATTEMPTS = 10


class Dispatcher:
    """
    Coordinates parcels, assignments and drivers.
    """

    def __init__(
        self,
        store: LogisticsStore,
        pricing: PricingCalculator,
        notifier: Optional[NotificationSink] = None,
        tracking_id_generator: Callable[[], str] = generate_tracking_id,
        estimate_policy: Optional[DeliveryEstimatePolicy] = None,
    ):
        self.store = store
        self.pricing = pricing
        self.notifier = notifier or NotificationSink()
        self.tracking_id_generator = tracking_id_generator
        self.estimate_policy = estimate_policy

    # --- parcel creation ---

    def quote(self, request: NewParcelRequest) -> Tuple[PriceQuote, date]:
        """Price and ETA preview. Nothing is persisted."""
        request = request.validate()
        quote = self.pricing.price(
            request.pickup_address,
            request.delivery_address,
            request.weight,
            request.service_type,
            request.insurance,
        )
        eta = estimate_delivery_date(
            request.service_type,
            quote.distance_km,
            quote.duration_minutes,
            policy=self.estimate_policy,
        )
        return quote, eta

    def create_parcel(self, request: NewParcelRequest) -> Parcel:
        # validation happens before any geocoding or routing call
        request = request.validate()
        quote, eta = self.quote(request)

        for attempt in range(1, MAX_TRACKING_ID_ATTEMPTS + 1):
            tracking_id = self.tracking_id_generator()
            if self.store.tracking_id_exists(tracking_id):
                logger.warning("Tracking id collision on %s (attempt %d)", tracking_id, attempt)
                continue

            parcel = Parcel.new(request, tracking_id, quote.price, quote.distance_km, eta)
            entry = StatusHistoryEntry(
                parcel_id=parcel.id,
                status=ParcelStatus.CREATED,
                updated_by=request.sender_id,
                location=request.pickup_address,
                notes="Parcel created",
                timestamp=parcel.created_at,
            )
            try:
                with self.store.atomic(parcel_key(parcel.id)):
                    parcel = self.store.add_parcel(parcel)
                    self.store.append_status_history(entry)
            except TrackingIdTaken:
                # lost the id to a concurrent insert between the check and the write
                logger.warning("Tracking id %s taken on insert (attempt %d)", tracking_id, attempt)
                continue

            logger.info("Parcel %s created (%s, price %s)", parcel.id, parcel.tracking_id, parcel.price)
            return parcel

        raise TrackingIdTaken(f"Could not allocate a tracking id after {MAX_TRACKING_ID_ATTEMPTS} attempts")

    # --- exclusive assignment ---

    def claim_parcel(self, driver_user_id: str, parcel_id: str) -> Assignment:
        """A driver takes an unassigned parcel for themselves."""
        driver = self.store.get_driver_by_user(driver_user_id)
        if driver is None:
            raise DriverNotFound(f"No driver profile for user {driver_user_id}", user_id=driver_user_id)
        return self._assign(driver.id, parcel_id, assigned_by=driver_user_id, notes="Driver claimed parcel")

    def assign_parcel(self, admin_id: str, driver_id: str, parcel_id: str) -> Assignment:
        """An admin hands a parcel to a specific driver."""
        return self._assign(driver_id, parcel_id, assigned_by=admin_id, notes="Parcel assigned to driver")

    def _assign(self, driver_id: str, parcel_id: str, assigned_by: str, notes: str) -> Assignment:
        """
        Race Condition Resolver: guarantees a parcel gets at most one Assignment
        and a driver holds at most one active parcel, however many requests
        arrive together.
        """
        with self.store.atomic(parcel_key(parcel_id), driver_key(driver_id)):
            parcel = self.store.get_parcel(parcel_id)
            if parcel is None:
                raise ParcelNotFound(f"Parcel {parcel_id} not found", parcel_id=parcel_id)
            if parcel.status != ParcelStatus.CREATED:
                raise ParcelNotAvailable(
                    f"Parcel {parcel_id} is {parcel.status.value}, not available", parcel_id=parcel_id
                )
            if self.store.get_assignment_for_parcel(parcel_id) is not None:
                raise ParcelAlreadyAssigned(f"Parcel {parcel_id} is already assigned", parcel_id=parcel_id)

            driver = self.store.get_driver(driver_id)
            if driver is None:
                raise DriverNotFound(f"Driver {driver_id} not found", driver_id=driver_id)

            # all checks and pure transitions first, then the writes
            busy_driver = handle_driver_assignment(driver)
            next_parcel, entry = transition_parcel(
                parcel, ParcelStatus.PICKED_UP, updated_by=assigned_by, notes=notes
            )

            # the assignment insert is the only write the store may refuse, so it goes first
            assignment = self.store.add_assignment(Assignment.new(parcel_id, driver_id, assigned_by))
            self.store.save_driver(busy_driver)
            parcel = self.store.save_parcel_status(next_parcel)
            self.store.append_status_history(entry)

        logger.info("Parcel %s assigned to driver %s by %s", parcel_id, driver_id, assigned_by)
        self._notify(self.notifier.notify_driver_assignment, busy_driver, parcel)
        self._notify(self.notifier.notify_status_update, parcel, entry)
        return assignment

    # --- status transitions ---

    def update_parcel_status(
        self,
        actor: Actor,
        parcel_id: str,
        new_status,
        location: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Parcel:
        try:
            new_status = ParcelStatus(new_status)
        except ValueError as exc:
            raise ValidationError(f"unknown parcel status '{new_status}'", field="status") from exc

        acting_driver_id = None
        if actor.role == ActorRole.DRIVER:
            acting_driver = self.store.get_driver_by_user(actor.id)
            acting_driver_id = acting_driver.id if acting_driver else None

        while True:
            # an assignment never changes driver, so its key can be locked up front
            known = self.store.get_assignment_for_parcel(parcel_id)
            keys = [parcel_key(parcel_id)]
            if known is not None:
                keys.append(driver_key(known.driver_id))

            with self.store.atomic(*keys):
                assignment = self.store.get_assignment_for_parcel(parcel_id)
                if (assignment is None) != (known is None):
                    continue  # assigned between the read and the lock

                parcel = self.store.get_parcel(parcel_id)
                if parcel is None:
                    raise ParcelNotFound(f"Parcel {parcel_id} not found", parcel_id=parcel_id)

                check_status_writer(actor, assignment, acting_driver_id)
                if new_status == ParcelStatus.PICKED_UP:
                    # picked_up always comes with an Assignment and a busy driver
                    raise InvalidStatusTransition(
                        f"Parcel {parcel_id} is picked up by claiming or assigning it, not by a status update",
                        parcel_id=parcel_id,
                    )
                next_parcel, entry = transition_parcel(
                    parcel, new_status, updated_by=actor.id, location=location, notes=notes or ""
                )

                released = None
                if next_parcel.is_terminal and assignment is not None and assignment.is_active:
                    driver = self.store.get_driver(assignment.driver_id)
                    self.store.save_assignment_status(close_assignment(assignment, new_status))
                    if driver is not None:
                        released = self.store.save_driver(handle_driver_release(driver))

                parcel = self.store.save_parcel_status(next_parcel)
                self.store.append_status_history(entry)
            break

        logger.info("Parcel %s moved to %s by %s", parcel_id, new_status.value, actor.id)
        if released is not None:
            logger.info("Driver %s released after parcel %s reached %s", released.id, parcel_id, new_status.value)
        self._notify(self.notifier.notify_status_update, parcel, entry)
        return parcel

    # --- drivers ---

    def register_driver(
        self,
        user_id: str,
        license_number: Optional[str] = None,
        vehicle_type: Optional[str] = None,
        vehicle_plate: Optional[str] = None,
        status=DriverStatus.OFFLINE,
    ) -> Driver:
        if self.store.get_driver_by_user(user_id) is not None:
            raise DriverAlreadyRegistered(f"User {user_id} already has a driver profile", user_id=user_id)
        try:
            driver = Driver.new(user_id, status, license_number, vehicle_type, vehicle_plate)
        except ValueError as exc:
            raise ValidationError(f"unknown driver status '{status}'", field="status") from exc
        if driver.status == DriverStatus.BUSY:
            raise ValidationError("a new driver cannot start busy", field="status")
        return self.store.add_driver(driver)

    def set_driver_availability(self, driver_id: str, status) -> Driver:
        with self.store.atomic(driver_key(driver_id)):
            driver = self._require_driver(driver_id)
            has_active = any(a.is_active for a in self.store.list_assignments_for_driver(driver_id))
            updated = handle_availability_change(driver, status, has_active)
            driver = self.store.save_driver(updated)
        logger.info("Driver %s is now %s", driver_id, driver.status.value)
        return driver

    def update_driver_profile(self, driver_id: str, update: DriverProfileUpdate) -> Driver:
        if update.is_empty:
            raise ValidationError("nothing to update")
        with self.store.atomic(driver_key(driver_id)):
            driver = self._require_driver(driver_id)
            changes = {
                name: value
                for name, value in (
                    ("license_number", update.license_number),
                    ("vehicle_type", update.vehicle_type),
                    ("vehicle_plate", update.vehicle_plate),
                )
                if value is not None
            }
            driver = self.store.save_driver(replace(driver, updated_at=utcnow(), **changes))
        return driver

    def update_driver_location(self, driver_id: str, location: Coordinate) -> Driver:
        with self.store.atomic(driver_key(driver_id)):
            driver = self._require_driver(driver_id)
            driver = self.store.save_driver(replace(driver, current_location=location, updated_at=utcnow()))
        return driver

    def get_driver(self, driver_id: str) -> Driver:
        return self._require_driver(driver_id)

    def get_driver_for_user(self, user_id: str) -> Driver:
        driver = self.store.get_driver_by_user(user_id)
        if driver is None:
            raise DriverNotFound(f"No driver profile for user {user_id}", user_id=user_id)
        return driver

    def list_drivers(self, status=None) -> List[Driver]:
        if status is not None:
            try:
                status = DriverStatus(status)
            except ValueError as exc:
                raise ValidationError(f"unknown driver status '{status}'", field="status") from exc
        return self.store.list_drivers(status)

    def driver_assignments(self, driver_id: str) -> List[Assignment]:
        self._require_driver(driver_id)
        return self.store.list_assignments_for_driver(driver_id)

    # --- reads ---

    def get_parcel(self, parcel_id: str) -> Parcel:
        parcel = self.store.get_parcel(parcel_id)
        if parcel is None:
            raise ParcelNotFound(f"Parcel {parcel_id} not found", parcel_id=parcel_id)
        return parcel

    def parcel_history(self, parcel_id: str) -> List[StatusHistoryEntry]:
        self.get_parcel(parcel_id)
        return self.store.list_status_history(parcel_id)

    def track_parcel(self, tracking_id: str) -> Tuple[Parcel, List[StatusHistoryEntry]]:
        """Public tracking: the parcel and its history, newest first."""
        parcel = self.store.get_parcel_by_tracking_id(str(tracking_id).strip().upper())
        if parcel is None:
            raise ParcelNotFound(f"No parcel with tracking id {tracking_id}", tracking_id=tracking_id)
        history = list(reversed(self.store.list_status_history(parcel.id)))
        return parcel, history

    def list_parcels(self, actor: Actor) -> List[Parcel]:
        """
        Newest first, scoped by role: a customer sees what they sent, a driver
        what they were assigned, an admin everything.
        """
        if actor.is_admin:
            return self.store.list_parcels()
        if actor.role == ActorRole.DRIVER:
            driver = self.store.get_driver_by_user(actor.id)
            return self.store.list_parcels_for_driver(driver.id) if driver else []
        return self.store.list_parcels_for_sender(actor.id)

    def list_available_parcels(self) -> List[Parcel]:
        return self.store.list_unassigned_parcels()

    def _require_driver(self, driver_id: str) -> Driver:
        driver = self.store.get_driver(driver_id)
        if driver is None:
            raise DriverNotFound(f"Driver {driver_id} not found", driver_id=driver_id)
        return driver

    @staticmethod
    def _notify(hook, *args) -> None:
        # the state change is already committed; a sink failure must not undo it for the caller
        try:
            hook(*args)
        except Exception:
            logger.exception("Notification hook %s failed", getattr(hook, "__name__", hook))
