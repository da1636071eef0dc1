"""
Purpose: The store contract the core is written against.
What it does:

Every persistence adapter (in-memory, Django ORM) implements LogisticsStore.
The handle is constructed explicitly, passed into the core and closed at
shutdown; nothing in the core reaches for a global connection.

Write methods persist an explicit, enumerated field set per entity, never a
generic "update whatever changed" mapping.

Atomicity:
    with store.atomic("parcel:<id>", "driver:<id>"):
        ... reads + writes ...
serializes every other atomic block that names one of the same keys, and (for
transactional stores) commits or rolls back as one unit. Keys are
"<entity>:<id>" strings.
"""

import abc
from typing import ContextManager, List, Optional

from dispatch.models import Assignment
from drivers.models import Driver, DriverStatus
from parcels.models import Parcel, StatusHistoryEntry
from payments.models import Payment
from pricing.models import PricingRule


def parcel_key(parcel_id: str) -> str:
    return f"parcel:{parcel_id}"


def driver_key(driver_id: str) -> str:
    return f"driver:{driver_id}"


class LogisticsStore(abc.ABC):

    # --- lifecycle / transactions ---

    def close(self) -> None:
        """Release connections. Safe to call more than once."""

    @abc.abstractmethod
    def atomic(self, *keys: str) -> ContextManager[None]:
        ...

    # --- pricing rules ---

    @abc.abstractmethod
    def add_pricing_rule(self, rule: PricingRule) -> PricingRule:
        """Insert a rule as inactive, whatever rule.is_active says."""

    @abc.abstractmethod
    def get_pricing_rule(self, rule_id: str) -> Optional[PricingRule]:
        ...

    @abc.abstractmethod
    def list_pricing_rules(self) -> List[PricingRule]:
        """Newest first."""

    @abc.abstractmethod
    def save_pricing_rule(self, rule: PricingRule) -> PricingRule:
        """Persist the rate fields of an existing rule. Never touches is_active."""

    @abc.abstractmethod
    def get_active_pricing_rule(self) -> Optional[PricingRule]:
        ...

    @abc.abstractmethod
    def activate_pricing_rule(self, rule_id: str) -> PricingRule:
        """
        Deactivate every other rule and activate rule_id as one atomic step.
        Concurrent readers see either the old or the new active rule.
        Raises PricingRuleNotFound.
        """

    # --- parcels & history ---

    @abc.abstractmethod
    def add_parcel(self, parcel: Parcel) -> Parcel:
        """Raises TrackingIdTaken when the tracking id is already used."""

    @abc.abstractmethod
    def tracking_id_exists(self, tracking_id: str) -> bool:
        ...

    @abc.abstractmethod
    def get_parcel(self, parcel_id: str) -> Optional[Parcel]:
        ...

    @abc.abstractmethod
    def get_parcel_by_tracking_id(self, tracking_id: str) -> Optional[Parcel]:
        ...

    @abc.abstractmethod
    def save_parcel_status(self, parcel: Parcel) -> Parcel:
        """Persist status, current_location, actual_delivery_date and updated_at."""

    @abc.abstractmethod
    def list_unassigned_parcels(self) -> List[Parcel]:
        """Parcels in status created with no assignment, newest first."""

    @abc.abstractmethod
    def list_parcels(self) -> List[Parcel]:
        """Every parcel, newest first."""

    @abc.abstractmethod
    def list_parcels_for_sender(self, sender_id: str) -> List[Parcel]:
        """Newest first."""

    @abc.abstractmethod
    def list_parcels_for_driver(self, driver_id: str) -> List[Parcel]:
        """Parcels the driver holds or held an assignment for, newest first."""

    @abc.abstractmethod
    def append_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        ...

    @abc.abstractmethod
    def list_status_history(self, parcel_id: str) -> List[StatusHistoryEntry]:
        """Oldest first."""

    # --- drivers ---

    @abc.abstractmethod
    def add_driver(self, driver: Driver) -> Driver:
        ...

    @abc.abstractmethod
    def get_driver(self, driver_id: str) -> Optional[Driver]:
        ...

    @abc.abstractmethod
    def get_driver_by_user(self, user_id: str) -> Optional[Driver]:
        ...

    @abc.abstractmethod
    def save_driver(self, driver: Driver) -> Driver:
        """Persist status, profile fields, current_location and updated_at."""

    @abc.abstractmethod
    def list_drivers(self, status: Optional[DriverStatus] = None) -> List[Driver]:
        ...

    # --- assignments ---

    @abc.abstractmethod
    def add_assignment(self, assignment: Assignment) -> Assignment:
        """Raises ParcelAlreadyAssigned when the parcel already has one."""

    @abc.abstractmethod
    def get_assignment_for_parcel(self, parcel_id: str) -> Optional[Assignment]:
        ...

    @abc.abstractmethod
    def save_assignment_status(self, assignment: Assignment) -> Assignment:
        ...

    @abc.abstractmethod
    def list_assignments_for_driver(self, driver_id: str) -> List[Assignment]:
        """Newest first."""

    # --- payments ---

    @abc.abstractmethod
    def add_payment(self, payment: Payment) -> Payment:
        ...

    @abc.abstractmethod
    def get_payment(self, payment_id: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def get_payment_by_reference(self, provider_reference: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def get_completed_payment_for_parcel(self, parcel_id: str) -> Optional[Payment]:
        ...

    @abc.abstractmethod
    def save_payment(self, payment: Payment) -> Payment:
        """Persist payment_status, transaction_id, refunded_amount and updated_at."""

    @abc.abstractmethod
    def list_payments_for_user(self, user_id: str) -> List[Payment]:
        """Newest first."""
