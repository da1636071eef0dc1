"""
Purpose: Payment records and the provider-facing value types.
Lifecycle: PENDING -> COMPLETED -> REFUNDED. Nothing goes back to PENDING.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PAYNOW = "paynow"
    COD = "cod"  # cash on delivery


@dataclass(frozen=True)
class Payment:
    id: str
    parcel_id: str
    user_id: str
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.PAYNOW
    payment_status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    # reference we registered with the provider, and where to poll it
    provider_reference: Optional[str] = None
    poll_url: Optional[str] = None
    refunded_amount: Optional[Decimal] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new(parcel_id: str, user_id: str, amount: Decimal, payment_method: PaymentMethod) -> Payment:
        return Payment(
            id=str(uuid.uuid4()),
            parcel_id=parcel_id,
            user_id=str(user_id),
            amount=amount,
            payment_method=payment_method,
        )


@dataclass(frozen=True)
class CheckoutHandle:
    """Where the customer goes to pay, and where we poll the outcome."""
    redirect_url: Optional[str]
    poll_url: str
    instructions: Optional[str] = None


@dataclass(frozen=True)
class PaymentInitiation:
    """
    degraded=True means no provider took part (not configured, or cash on
    delivery): the pending record exists but there is nothing to redirect to.
    """
    payment: Payment
    checkout: Optional[CheckoutHandle] = None

    @property
    def degraded(self) -> bool:
        return self.checkout is None


@dataclass(frozen=True)
class ProviderTransactionStatus:
    """The provider's own answer to "what happened to this transaction?"."""
    paid: bool
    status: str
    reference: Optional[str]
    provider_transaction_id: Optional[str]
    amount: Optional[Decimal]
