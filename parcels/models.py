"""
Purpose: Domain models for the Parcels capability.
What it does:
- Defines core data structures:
- Parcel (id, tracking id, sender, recipient, addresses, weight, service type, status, price, dates)
- StatusHistoryEntry (append-only audit row, one per status transition)
- NewParcelRequest (what a customer submits, validated before any pricing call)

Defines enums/constants:
- ParcelStatus = CREATED | PICKED_UP | IN_TRANSIT | OUT_FOR_DELIVERY | DELIVERED | FAILED | RETURNED
- ServiceType = STANDARD | EXPRESS

Rule: No pricing calls, no state transition rules. Models only.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from core.errors import ValidationError

# smallest weight the store keeps (grams)
WEIGHT_STEP = Decimal("0.001")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ParcelStatus(str, Enum):
    CREATED = "created"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"


class ServiceType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"


@dataclass(frozen=True)
class NewParcelRequest:
    """
    Customer input for parcel creation. validate() runs before any external call.
    """

    sender_id: str
    recipient_name: str
    recipient_phone: str
    pickup_address: str
    delivery_address: str
    weight: Decimal
    service_type: ServiceType = ServiceType.STANDARD
    insurance: bool = False
    parcel_type: Optional[str] = None
    description: Optional[str] = None

    def validate(self) -> NewParcelRequest:
        for name in ("recipient_name", "recipient_phone", "pickup_address", "delivery_address"):
            value = getattr(self, name)
            if value is None or not str(value).strip():
                raise ValidationError(f"{name} must not be blank", field=name)

        try:
            weight = Decimal(str(self.weight))
        except ArithmeticError as exc:
            raise ValidationError(f"weight '{self.weight}' is not a number", field="weight") from exc
        if not weight.is_finite() or weight <= 0:
            raise ValidationError("weight must be greater than 0", field="weight")
        if weight.quantize(WEIGHT_STEP) != weight:
            raise ValidationError("weight allows at most 3 decimal places", field="weight")

        try:
            service_type = ServiceType(self.service_type)
        except ValueError as exc:
            raise ValidationError(f"unknown service type '{self.service_type}'", field="service_type") from exc

        return NewParcelRequest(
            sender_id=str(self.sender_id),
            recipient_name=self.recipient_name.strip(),
            recipient_phone=str(self.recipient_phone).strip(),
            pickup_address=self.pickup_address.strip(),
            delivery_address=self.delivery_address.strip(),
            weight=weight,
            service_type=service_type,
            insurance=bool(self.insurance),
            parcel_type=self.parcel_type,
            description=self.description,
        )


@dataclass(frozen=True)
class Parcel:
    """
    A parcel is never deleted; it only moves through status transitions.
    actual_delivery_date is set only when the parcel is delivered.
    """

    id: str
    tracking_id: str
    sender_id: str
    recipient_name: str
    recipient_phone: str
    pickup_address: str
    delivery_address: str
    weight: Decimal
    service_type: ServiceType
    price: Decimal
    distance_km: float
    estimated_delivery_date: date
    status: ParcelStatus = ParcelStatus.CREATED
    insurance: bool = False
    parcel_type: Optional[str] = None
    description: Optional[str] = None
    current_location: Optional[str] = None
    actual_delivery_date: Optional[date] = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ParcelStatus.DELIVERED, ParcelStatus.FAILED, ParcelStatus.RETURNED)

    @staticmethod # Factory method to create a Parcel from a validated request and its quote
    def new(request: NewParcelRequest, tracking_id: str, price: Decimal, distance_km: float,
            estimated_delivery_date: date) -> Parcel:
        return Parcel(
            id=str(uuid.uuid4()),
            tracking_id=tracking_id,
            sender_id=request.sender_id,
            recipient_name=request.recipient_name,
            recipient_phone=request.recipient_phone,
            pickup_address=request.pickup_address,
            delivery_address=request.delivery_address,
            weight=request.weight,
            service_type=request.service_type,
            price=price,
            distance_km=distance_km,
            estimated_delivery_date=estimated_delivery_date,
            insurance=request.insurance,
            parcel_type=request.parcel_type,
            description=request.description,
            current_location=request.pickup_address,
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    """
    Append-only audit row. Never mutated or deleted.
    """

    parcel_id: str
    status: ParcelStatus
    updated_by: str
    location: Optional[str] = None
    notes: str = ""
    timestamp: datetime = field(default_factory=utcnow)
