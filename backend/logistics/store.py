"""
Purpose: LogisticsStore on the Django ORM.
What it does:
- atomic(*keys) opens transaction.atomic() and takes SELECT ... FOR UPDATE row
  locks on the named parcels/drivers, in sorted key order
- the database enforces what must never happen twice: one Assignment per
  parcel (OneToOne), one active PricingRule and one completed Payment per
  parcel (partial unique constraints), unique tracking ids
- pricing rule activation locks every rule row, so concurrent activations
  queue instead of colliding on the single-active index
- rows are converted to and from the core's frozen dataclasses; every write
  names its update_fields explicitly

On SQLite select_for_update is a no-op and the database-level write lock plus
the constraints carry exclusivity; on PostgreSQL the row locks serialize too.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, List, Optional

from django.db import IntegrityError, transaction

from core.errors import ParcelAlreadyAssigned, PricingRuleNotFound, TrackingIdTaken
from dispatch.models import Assignment, AssignmentStatus
from drivers.models import Driver, DriverStatus
from parcels.models import Parcel, ParcelStatus, ServiceType, StatusHistoryEntry
from payments.models import Payment, PaymentMethod, PaymentStatus
from pricing.models import PricingRule
from routing.models import Coordinate
from storage.base import LogisticsStore

from . import models as orm


# --- row <-> record ---

def _rule(row: orm.PricingRule) -> PricingRule:
    return PricingRule(
        id=row.id,
        rule_name=row.rule_name,
        base_price=row.base_price,
        price_per_km=row.price_per_km,
        price_per_kg=row.price_per_kg,
        express_surcharge=row.express_surcharge,
        insurance_fee=row.insurance_fee,
        min_price=row.min_price,
        weight_included_kg=row.weight_included_kg,
        max_price=row.max_price,
        is_active=row.is_active,
        created_at=row.created_at,
    )


def _parcel(row: orm.Parcel) -> Parcel:
    return Parcel(
        id=row.id,
        tracking_id=row.tracking_id,
        sender_id=row.sender_id,
        recipient_name=row.recipient_name,
        recipient_phone=str(row.recipient_phone),
        pickup_address=row.pickup_address,
        delivery_address=row.delivery_address,
        weight=Decimal(row.weight),
        service_type=ServiceType(row.service_type),
        price=row.price,
        distance_km=row.distance_km,
        estimated_delivery_date=row.estimated_delivery_date,
        status=ParcelStatus(row.status),
        insurance=row.insurance,
        parcel_type=row.parcel_type,
        description=row.description,
        current_location=row.current_location,
        actual_delivery_date=row.actual_delivery_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _history(row: orm.StatusHistory) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        parcel_id=row.parcel_id,
        status=ParcelStatus(row.status),
        updated_by=row.updated_by,
        location=row.location,
        notes=row.notes,
        timestamp=row.timestamp,
    )


def _driver(row: orm.Driver) -> Driver:
    location = None
    if row.current_lat is not None and row.current_lng is not None:
        location = Coordinate(latitude=row.current_lat, longitude=row.current_lng)
    return Driver(
        id=row.id,
        user_id=row.user_id,
        status=DriverStatus(row.status),
        license_number=row.license_number,
        vehicle_type=row.vehicle_type,
        vehicle_plate=row.vehicle_plate,
        current_location=location,
        updated_at=row.updated_at,
    )


def _assignment(row: orm.Assignment) -> Assignment:
    return Assignment(
        id=row.id,
        parcel_id=row.parcel_id,
        driver_id=row.driver_id,
        assigned_by=row.assigned_by,
        status=AssignmentStatus(row.status),
        assigned_at=row.assigned_at,
    )


def _payment(row: orm.Payment) -> Payment:
    return Payment(
        id=row.id,
        parcel_id=row.parcel_id,
        user_id=row.user_id,
        amount=row.amount,
        payment_method=PaymentMethod(row.payment_method),
        payment_status=PaymentStatus(row.payment_status),
        transaction_id=row.transaction_id,
        provider_reference=row.provider_reference,
        poll_url=row.poll_url,
        refunded_amount=row.refunded_amount,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DjangoStore(LogisticsStore):

    _lockable = {
        "parcel": orm.Parcel,
        "driver": orm.Driver,
    }

    @contextmanager
    def atomic(self, *keys: str) -> Iterator[None]:
        with transaction.atomic():
            for key in sorted(set(keys)):
                entity, _, pk = key.partition(":")
                model = self._lockable[entity]
                # evaluating the queryset is what takes the lock
                list(model.objects.select_for_update().filter(pk=pk).values_list("pk", flat=True))
            yield

    # --- pricing rules ---

    def add_pricing_rule(self, rule: PricingRule) -> PricingRule:
        row = orm.PricingRule.objects.create(
            id=rule.id,
            rule_name=rule.rule_name,
            base_price=rule.base_price,
            price_per_km=rule.price_per_km,
            price_per_kg=rule.price_per_kg,
            weight_included_kg=rule.weight_included_kg,
            express_surcharge=rule.express_surcharge,
            insurance_fee=rule.insurance_fee,
            min_price=rule.min_price,
            max_price=rule.max_price,
            is_active=False,
            created_at=rule.created_at,
        )
        return _rule(row)

    def get_pricing_rule(self, rule_id: str) -> Optional[PricingRule]:
        row = orm.PricingRule.objects.filter(pk=rule_id).first()
        return _rule(row) if row else None

    def list_pricing_rules(self) -> List[PricingRule]:
        return [_rule(row) for row in orm.PricingRule.objects.order_by("-created_at")]

    def save_pricing_rule(self, rule: PricingRule) -> PricingRule:
        with transaction.atomic():
            row = orm.PricingRule.objects.select_for_update().filter(pk=rule.id).first()
            if row is None:
                raise PricingRuleNotFound(f"Pricing rule {rule.id} not found", rule_id=rule.id)
            row.rule_name = rule.rule_name
            row.base_price = rule.base_price
            row.price_per_km = rule.price_per_km
            row.price_per_kg = rule.price_per_kg
            row.weight_included_kg = rule.weight_included_kg
            row.express_surcharge = rule.express_surcharge
            row.insurance_fee = rule.insurance_fee
            row.min_price = rule.min_price
            row.max_price = rule.max_price
            row.save(update_fields=[
                "rule_name", "base_price", "price_per_km", "price_per_kg", "weight_included_kg",
                "express_surcharge", "insurance_fee", "min_price", "max_price",
            ])
        return _rule(row)

    def get_active_pricing_rule(self) -> Optional[PricingRule]:
        row = orm.PricingRule.objects.filter(is_active=True).first()
        return _rule(row) if row else None

    def activate_pricing_rule(self, rule_id: str) -> PricingRule:
        with transaction.atomic():
            # every rule row is locked, so activations of different rules run one at a time
            locked = list(
                orm.PricingRule.objects.select_for_update().order_by("pk").values_list("pk", flat=True)
            )
            if rule_id not in locked:
                raise PricingRuleNotFound(f"Pricing rule {rule_id} not found", rule_id=rule_id)
            # deactivate first or the partial unique index rejects the swap
            orm.PricingRule.objects.filter(is_active=True).exclude(pk=rule_id).update(is_active=False)
            orm.PricingRule.objects.filter(pk=rule_id).update(is_active=True)
            row = orm.PricingRule.objects.get(pk=rule_id)
        return _rule(row)

    # --- parcels & history ---

    def add_parcel(self, parcel: Parcel) -> Parcel:
        try:
            with transaction.atomic():
                orm.Parcel.objects.create(
                    id=parcel.id,
                    tracking_id=parcel.tracking_id,
                    sender_id=parcel.sender_id,
                    recipient_name=parcel.recipient_name,
                    recipient_phone=parcel.recipient_phone,
                    pickup_address=parcel.pickup_address,
                    delivery_address=parcel.delivery_address,
                    weight=parcel.weight,
                    service_type=parcel.service_type.value,
                    insurance=parcel.insurance,
                    parcel_type=parcel.parcel_type,
                    description=parcel.description,
                    price=parcel.price,
                    distance_km=parcel.distance_km,
                    status=parcel.status.value,
                    current_location=parcel.current_location,
                    estimated_delivery_date=parcel.estimated_delivery_date,
                    actual_delivery_date=parcel.actual_delivery_date,
                    created_at=parcel.created_at,
                    updated_at=parcel.updated_at,
                )
        except IntegrityError as exc:
            raise TrackingIdTaken(f"Tracking id {parcel.tracking_id} already in use") from exc
        return parcel

    def tracking_id_exists(self, tracking_id: str) -> bool:
        return orm.Parcel.objects.filter(tracking_id=tracking_id).exists()

    def get_parcel(self, parcel_id: str) -> Optional[Parcel]:
        row = orm.Parcel.objects.filter(pk=parcel_id).first()
        return _parcel(row) if row else None

    def get_parcel_by_tracking_id(self, tracking_id: str) -> Optional[Parcel]:
        row = orm.Parcel.objects.filter(tracking_id=tracking_id).first()
        return _parcel(row) if row else None

    def save_parcel_status(self, parcel: Parcel) -> Parcel:
        orm.Parcel.objects.filter(pk=parcel.id).update(
            status=parcel.status.value,
            current_location=parcel.current_location,
            actual_delivery_date=parcel.actual_delivery_date,
            updated_at=parcel.updated_at,
        )
        return self.get_parcel(parcel.id)

    def list_unassigned_parcels(self) -> List[Parcel]:
        rows = orm.Parcel.objects.filter(
            status=orm.Parcel.Status.CREATED, assignment__isnull=True
        ).order_by("-created_at")
        return [_parcel(row) for row in rows]

    def list_parcels(self) -> List[Parcel]:
        return [_parcel(row) for row in orm.Parcel.objects.order_by("-created_at")]

    def list_parcels_for_sender(self, sender_id: str) -> List[Parcel]:
        rows = orm.Parcel.objects.filter(sender_id=str(sender_id)).order_by("-created_at")
        return [_parcel(row) for row in rows]

    def list_parcels_for_driver(self, driver_id: str) -> List[Parcel]:
        rows = orm.Parcel.objects.filter(assignment__driver_id=driver_id).order_by("-created_at")
        return [_parcel(row) for row in rows]

    def append_status_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        orm.StatusHistory.objects.create(
            parcel_id=entry.parcel_id,
            status=entry.status.value,
            location=entry.location,
            updated_by=entry.updated_by,
            notes=entry.notes,
            timestamp=entry.timestamp,
        )
        return entry

    def list_status_history(self, parcel_id: str) -> List[StatusHistoryEntry]:
        rows = orm.StatusHistory.objects.filter(parcel_id=parcel_id).order_by("timestamp", "id")
        return [_history(row) for row in rows]

    # --- drivers ---

    def add_driver(self, driver: Driver) -> Driver:
        location = driver.current_location
        orm.Driver.objects.create(
            id=driver.id,
            user_id=driver.user_id,
            status=driver.status.value,
            license_number=driver.license_number,
            vehicle_type=driver.vehicle_type,
            vehicle_plate=driver.vehicle_plate,
            current_lat=location.latitude if location else None,
            current_lng=location.longitude if location else None,
            updated_at=driver.updated_at,
        )
        return driver

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        row = orm.Driver.objects.filter(pk=driver_id).first()
        return _driver(row) if row else None

    def get_driver_by_user(self, user_id: str) -> Optional[Driver]:
        row = orm.Driver.objects.filter(user_id=str(user_id)).first()
        return _driver(row) if row else None

    def save_driver(self, driver: Driver) -> Driver:
        location = driver.current_location
        orm.Driver.objects.filter(pk=driver.id).update(
            status=driver.status.value,
            license_number=driver.license_number,
            vehicle_type=driver.vehicle_type,
            vehicle_plate=driver.vehicle_plate,
            current_lat=location.latitude if location else None,
            current_lng=location.longitude if location else None,
            updated_at=driver.updated_at,
        )
        return driver

    def list_drivers(self, status: Optional[DriverStatus] = None) -> List[Driver]:
        rows = orm.Driver.objects.order_by("user_id")
        if status is not None:
            rows = rows.filter(status=DriverStatus(status).value)
        return [_driver(row) for row in rows]

    # --- assignments ---

    def add_assignment(self, assignment: Assignment) -> Assignment:
        try:
            with transaction.atomic():
                orm.Assignment.objects.create(
                    id=assignment.id,
                    parcel_id=assignment.parcel_id,
                    driver_id=assignment.driver_id,
                    assigned_by=assignment.assigned_by,
                    status=assignment.status.value,
                    assigned_at=assignment.assigned_at,
                )
        except IntegrityError as exc:
            raise ParcelAlreadyAssigned(
                f"Parcel {assignment.parcel_id} is already assigned", parcel_id=assignment.parcel_id
            ) from exc
        return assignment

    def get_assignment_for_parcel(self, parcel_id: str) -> Optional[Assignment]:
        row = orm.Assignment.objects.filter(parcel_id=parcel_id).first()
        return _assignment(row) if row else None

    def save_assignment_status(self, assignment: Assignment) -> Assignment:
        orm.Assignment.objects.filter(pk=assignment.id).update(status=assignment.status.value)
        return assignment

    def list_assignments_for_driver(self, driver_id: str) -> List[Assignment]:
        rows = orm.Assignment.objects.filter(driver_id=driver_id).order_by("-assigned_at")
        return [_assignment(row) for row in rows]

    # --- payments ---

    def add_payment(self, payment: Payment) -> Payment:
        orm.Payment.objects.create(
            id=payment.id,
            parcel_id=payment.parcel_id,
            user_id=payment.user_id,
            amount=payment.amount,
            payment_method=payment.payment_method.value,
            payment_status=payment.payment_status.value,
            transaction_id=payment.transaction_id,
            provider_reference=payment.provider_reference,
            poll_url=payment.poll_url,
            refunded_amount=payment.refunded_amount,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )
        return payment

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        row = orm.Payment.objects.filter(pk=payment_id).first()
        return _payment(row) if row else None

    def get_payment_by_reference(self, provider_reference: str) -> Optional[Payment]:
        row = orm.Payment.objects.filter(provider_reference=provider_reference).first()
        return _payment(row) if row else None

    def get_completed_payment_for_parcel(self, parcel_id: str) -> Optional[Payment]:
        row = orm.Payment.objects.filter(
            parcel_id=parcel_id, payment_status=orm.Payment.PaymentStatus.COMPLETED
        ).first()
        return _payment(row) if row else None

    def save_payment(self, payment: Payment) -> Payment:
        orm.Payment.objects.filter(pk=payment.id).update(
            payment_status=payment.payment_status.value,
            transaction_id=payment.transaction_id,
            refunded_amount=payment.refunded_amount,
            updated_at=payment.updated_at,
        )
        return self.get_payment(payment.id)

    def list_payments_for_user(self, user_id: str) -> List[Payment]:
        rows = orm.Payment.objects.filter(user_id=str(user_id)).order_by("-created_at")
        return [_payment(row) for row in rows]
