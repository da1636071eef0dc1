"""
Purpose: Thread-safe in-memory LogisticsStore.
What it does:
- Keeps every entity in dicts keyed by id (frozen dataclasses, so stored
  objects are never mutated in place; writes replace them).
- atomic(*keys) takes one re-entrant lock per key, always in sorted order so
  two blocks naming the same keys cannot deadlock.
- A single data lock guards the dicts themselves, which also makes pricing
  rule activation and the active-rule read mutually exclusive.

Used by the tests, the claim simulation script and local development.
It has no rollback: callers do every check before their first write, and the
only write that can fail (add_assignment) is issued first.
"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, List, Optional

from core.errors import ParcelAlreadyAssigned, PricingRuleNotFound, TrackingIdTaken
from dispatch.models import Assignment
from drivers.models import Driver, DriverStatus
from parcels.models import Parcel, ParcelStatus, StatusHistoryEntry
from payments.models import Payment, PaymentStatus
from pricing.models import PricingRule
from storage.base import LogisticsStore


class InMemoryStore(LogisticsStore):

    def __init__(self):
        self._data_lock = threading.RLock()
        self._key_locks: Dict[str, threading.RLock] = {}
        self._key_locks_guard = threading.Lock()

        self._rules: Dict[str, PricingRule] = {}
        self._parcels: Dict[str, Parcel] = {}
        self._parcel_ids_by_tracking: Dict[str, str] = {}
        self._history: Dict[str, List[StatusHistoryEntry]] = {}
        self._drivers: Dict[str, Driver] = {}
        self._assignments_by_parcel: Dict[str, Assignment] = {}
        self._payments: Dict[str, Payment] = {}
        self.closed = False

    # --- lifecycle / transactions ---

    def close(self) -> None:
        self.closed = True

    def _lock_for(self, key: str) -> threading.RLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.RLock()
            return lock

    @contextmanager
    def atomic(self, *keys: str) -> Iterator[None]:
        locks = [self._lock_for(key) for key in sorted(set(keys))]
        acquired = []
        try:
            for lock in locks:
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # --- pricing rules ---

    def add_pricing_rule(self, rule: PricingRule) -> PricingRule:
        rule = replace(rule, is_active=False)
        with self._data_lock:
            self._rules[rule.id] = rule
        return rule

    def get_pricing_rule(self, rule_id: str) -> Optional[PricingRule]:
        with self._data_lock:
            return self._rules.get(rule_id)

    def list_pricing_rules(self) -> List[PricingRule]:
        with self._data_lock:
            return sorted(self._rules.values(), key=lambda rule: rule.created_at, reverse=True)

    def save_pricing_rule(self, rule: PricingRule) -> PricingRule:
        with self._data_lock:
            current = self._rules.get(rule.id)
            if current is None:
                raise PricingRuleNotFound(f"Pricing rule {rule.id} not found", rule_id=rule.id)
            rule = replace(rule, is_active=current.is_active)
            self._rules[rule.id] = rule
            return rule

    def get_active_pricing_rule(self) -> Optional[PricingRule]:
        with self._data_lock:
            for rule in self._rules.values():
                if rule.is_active:
                    return rule
            return None

    def activate_pricing_rule(self, rule_id: str) -> PricingRule:
        with self._data_lock:
            if rule_id not in self._rules:
                raise PricingRuleNotFound(f"Pricing rule {rule_id} not found", rule_id=rule_id)
            for other_id, other in list(self._rules.items()):
                if other.is_active and other_id != rule_id:
                    self._rules[other_id] = replace(other, is_active=False)
            activated = replace(self._rules[rule_id], is_active=True)
            self._rules[rule_id] = activated
            return activated

    # --- parcels & history ---

    def add_parcel(self, parcel: Parcel) -> Parcel:
        with self._data_lock:
            if parcel.tracking_id in self._parcel_ids_by_tracking:
                raise TrackingIdTaken(f"Tracking id {parcel.tracking_id} already in use")
            self._parcels[parcel.id] = parcel
            self._parcel_ids_by_tracking[parcel.tracking_id] = parcel.id
            self._history.setdefault(parcel.id, [])
        return parcel

    def tracking_id_exists(self, tracking_id: str) -> bool:
        with self._data_lock:
            return tracking_id in self._parcel_ids_by_tracking

    def get_parcel(self, parcel_id: str) -> Optional[Parcel]:
        with self._data_lock:
            return self._parcels.get(parcel_id)

    def get_parcel_by_tracking_id(self, tracking_id: str) -> Optional[Parcel]:
        with self._data_lock:
            parcel_id = self._parcel_ids_by_tracking.get(tracking_id)
            return self._parcels.get(parcel_id) if parcel_id else None

    def save_parcel_status(self, parcel: Parcel) -> Parcel:
        with self._data_lock:
            current = self._parcels[parcel.id]
            saved = replace(
                current,
                status=parcel.status,
                current_location=parcel.current_location,
                actual_delivery_date=parcel.actual_delivery_date,
                updated_at=parcel.updated_at,
            )
            self._parcels[parcel.id] = saved
            return saved

    def list_unassigned_parcels(self) -> List[Parcel]:
        with self._data_lock:
            parcels = [
                parcel for parcel in self._parcels.values()
                if parcel.status == ParcelStatus.CREATED and parcel.id not in self._assignments_by_parcel
            ]
        return sorted(parcels, key=lambda parcel: parcel.created_at, reverse=True)

    def list_parcels(self) -> List[Parcel]:
        with self._data_lock:
            parcels = list(self._parcels.values())
        return sorted(parcels, key=lambda parcel: parcel.created_at, reverse=True)

    def list_parcels_for_sender(self, sender_id: str) -> List[Parcel]:
        with self._data_lock:
            parcels = [parcel for parcel in self._parcels.values() if parcel.sender_id == str(sender_id)]
        return sorted(parcels, key=lambda parcel: parcel.created_at, reverse=True)

    def list_parcels_for_driver(self, driver_id: str) -> List[Parcel]:
        with self._data_lock:
            parcels = [
                self._parcels[a.parcel_id] for a in self._assignments_by_parcel.values()
                if a.driver_id == driver_id
            ]
        return sorted(parcels, key=lambda parcel: parcel.created_at, reverse=True)

    def append_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        with self._data_lock:
            self._history.setdefault(entry.parcel_id, []).append(entry)
        return entry

    def list_status_history(self, parcel_id: str) -> List[StatusHistoryEntry]:
        with self._data_lock:
            return list(self._history.get(parcel_id, []))

    # --- drivers ---

    def add_driver(self, driver: Driver) -> Driver:
        with self._data_lock:
            self._drivers[driver.id] = driver
        return driver

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        with self._data_lock:
            return self._drivers.get(driver_id)

    def get_driver_by_user(self, user_id: str) -> Optional[Driver]:
        with self._data_lock:
            for driver in self._drivers.values():
                if driver.user_id == str(user_id):
                    return driver
            return None

    def save_driver(self, driver: Driver) -> Driver:
        with self._data_lock:
            self._drivers[driver.id] = driver
        return driver

    def list_drivers(self, status: Optional[DriverStatus] = None) -> List[Driver]:
        with self._data_lock:
            drivers = list(self._drivers.values())
        if status is not None:
            drivers = [driver for driver in drivers if driver.status == status]
        return drivers

    # --- assignments ---

    def add_assignment(self, assignment: Assignment) -> Assignment:
        with self._data_lock:
            if assignment.parcel_id in self._assignments_by_parcel:
                raise ParcelAlreadyAssigned(
                    f"Parcel {assignment.parcel_id} is already assigned", parcel_id=assignment.parcel_id
                )
            self._assignments_by_parcel[assignment.parcel_id] = assignment
        return assignment

    def get_assignment_for_parcel(self, parcel_id: str) -> Optional[Assignment]:
        with self._data_lock:
            return self._assignments_by_parcel.get(parcel_id)

    def save_assignment_status(self, assignment: Assignment) -> Assignment:
        with self._data_lock:
            current = self._assignments_by_parcel[assignment.parcel_id]
            saved = replace(current, status=assignment.status)
            self._assignments_by_parcel[assignment.parcel_id] = saved
            return saved

    def list_assignments_for_driver(self, driver_id: str) -> List[Assignment]:
        with self._data_lock:
            assignments = [a for a in self._assignments_by_parcel.values() if a.driver_id == driver_id]
        return sorted(assignments, key=lambda a: a.assigned_at, reverse=True)

    # --- payments ---

    def add_payment(self, payment: Payment) -> Payment:
        with self._data_lock:
            self._payments[payment.id] = payment
        return payment

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        with self._data_lock:
            return self._payments.get(payment_id)

    def get_payment_by_reference(self, provider_reference: str) -> Optional[Payment]:
        with self._data_lock:
            for payment in self._payments.values():
                if payment.provider_reference == provider_reference:
                    return payment
            return None

    def get_completed_payment_for_parcel(self, parcel_id: str) -> Optional[Payment]:
        with self._data_lock:
            for payment in self._payments.values():
                if payment.parcel_id == parcel_id and payment.payment_status == PaymentStatus.COMPLETED:
                    return payment
            return None

    def save_payment(self, payment: Payment) -> Payment:
        with self._data_lock:
            current = self._payments[payment.id]
            saved = replace(
                current,
                payment_status=payment.payment_status,
                transaction_id=payment.transaction_id,
                refunded_amount=payment.refunded_amount,
                updated_at=payment.updated_at,
            )
            self._payments[payment.id] = saved
            return saved

    def list_payments_for_user(self, user_id: str) -> List[Payment]:
        with self._data_lock:
            payments = [p for p in self._payments.values() if p.user_id == str(user_id)]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)
