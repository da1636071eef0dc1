"""
Purpose: Payment lifecycle and reconciliation against the provider.
What it does:
- initiate: pending Payment for a parcel the caller owns, priced exactly as quoted
- confirm: pending -> completed, idempotent for a repeated transaction id
- handle_provider_callback: the provider's result URL only tells us *which*
  payment changed; we re-ask the provider over our own channel (stored poll URL)
  before settling anything
- refund: completed -> refunded

A parcel is settled at most once. Settlement runs under the parcel's atomic key,
so two confirmations racing on different payments of one parcel cannot both win.
"""

import logging
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from core.errors import (
    AmountMismatch,
    InvalidPaymentTransition,
    ParcelAlreadyPaid,
    ParcelNotFound,
    PaymentAlreadySettled,
    PaymentNotCompleted,
    PaymentNotFound,
    PaymentProviderError,
    PaymentProviderUnavailable,
    PaymentVerificationFailed,
    ValidationError,
)
from payments.models import (
    Payment,
    PaymentInitiation,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from storage.base import LogisticsStore, parcel_key

logger = logging.getLogger(__name__)


def _to_amount(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except ArithmeticError as exc:
        raise ValidationError(f"{field} '{value}' is not a number", field=field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return amount


class PaymentReconciler:
    """
    gateway is a PaynowGateway (or anything with register/check_status);
    None means no provider is configured.
    """

    def __init__(self, store: LogisticsStore, gateway=None):
        self.store = store
        self.gateway = gateway

    def initiate(self, parcel_id: str, user_id: str, amount, payment_method=PaymentMethod.PAYNOW) -> PaymentInitiation:
        amount = _to_amount(amount, "amount")
        try:
            payment_method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise ValidationError(f"unknown payment method '{payment_method}'", field="payment_method") from exc

        parcel = self.store.get_parcel(parcel_id)
        # someone else's parcel looks exactly like a missing one
        if parcel is None or parcel.sender_id != str(user_id):
            raise ParcelNotFound(f"Parcel {parcel_id} not found", parcel_id=parcel_id)
        if amount != parcel.price:
            raise AmountMismatch(
                f"Amount {amount} does not match parcel price {parcel.price}", parcel_id=parcel_id
            )
        if self.store.get_completed_payment_for_parcel(parcel_id) is not None:
            raise ParcelAlreadyPaid(f"Parcel {parcel_id} is already paid", parcel_id=parcel_id)

        payment = Payment.new(parcel_id, user_id, parcel.price, payment_method)

        checkout = None
        if payment_method == PaymentMethod.PAYNOW and self.gateway is not None:
            # provider first: a failed registration leaves nothing behind
            checkout = self.gateway.register(payment)
            payment = replace(payment, provider_reference=payment.id, poll_url=checkout.poll_url)
        elif payment_method == PaymentMethod.PAYNOW:
            logger.warning("No payment provider configured; payment for parcel %s recorded without checkout", parcel_id)

        payment = self.store.add_payment(payment)
        logger.info("Payment %s initiated for parcel %s (%s)", payment.id, parcel_id, payment_method.value)
        return PaymentInitiation(payment=payment, checkout=checkout)

    def confirm(self, payment_id: str, transaction_id: str) -> Payment:
        transaction_id = str(transaction_id or "").strip()
        if not transaction_id:
            raise ValidationError("transaction_id is required", field="transaction_id")

        payment = self._require(payment_id)
        with self.store.atomic(parcel_key(payment.parcel_id)):
            payment = self._require(payment_id)

            if payment.payment_status == PaymentStatus.REFUNDED:
                raise InvalidPaymentTransition(f"Payment {payment_id} was refunded", payment_id=payment_id)

            if payment.payment_status == PaymentStatus.COMPLETED:
                if payment.transaction_id == transaction_id:
                    return payment
                raise PaymentAlreadySettled(
                    f"Payment {payment_id} already settled by another transaction", payment_id=payment_id
                )

            settled = self.store.get_completed_payment_for_parcel(payment.parcel_id)
            if settled is not None:
                raise PaymentAlreadySettled(
                    f"Parcel {payment.parcel_id} already settled by payment {settled.id}",
                    payment_id=payment_id,
                )

            payment = self.store.save_payment(
                replace(
                    payment,
                    payment_status=PaymentStatus.COMPLETED,
                    transaction_id=transaction_id,
                    updated_at=utcnow(),
                )
            )

        logger.info("Payment %s completed (transaction %s)", payment_id, transaction_id)
        return payment

    def handle_provider_callback(self, reference: str) -> Payment:
        """
        The callback body is never trusted: only what the provider says when
        we poll it ourselves can settle a payment.
        """
        payment = self.store.get_payment_by_reference(str(reference))
        if payment is None:
            raise PaymentNotFound(f"No payment with reference {reference}", reference=reference)
        if self.gateway is None:
            raise PaymentProviderUnavailable("No payment provider configured")
        if payment.payment_status == PaymentStatus.COMPLETED:
            return payment
        if not payment.poll_url:
            raise PaymentVerificationFailed(f"Payment {payment.id} has no poll URL", payment_id=payment.id)

        try:
            status = self.gateway.check_status(payment.poll_url)
        except PaymentProviderError as exc:
            raise PaymentVerificationFailed(
                f"Could not verify payment {payment.id}: {exc.message}", payment_id=payment.id
            ) from exc

        if not status.paid:
            raise PaymentVerificationFailed(
                f"Provider reports payment {payment.id} as '{status.status}'", payment_id=payment.id
            )
        if status.reference is not None and status.reference != payment.provider_reference:
            raise PaymentVerificationFailed(
                f"Provider reference {status.reference} does not match payment {payment.id}", payment_id=payment.id
            )
        if status.amount is not None and status.amount != payment.amount:
            raise PaymentVerificationFailed(
                f"Provider amount {status.amount} does not match {payment.amount}", payment_id=payment.id
            )

        transaction_id = status.provider_transaction_id or payment.provider_reference
        return self.confirm(payment.id, transaction_id)

    def refund(self, payment_id: str, amount=None) -> Payment:
        """amount defaults to the full payment."""
        payment = self._require(payment_id)
        with self.store.atomic(parcel_key(payment.parcel_id)):
            payment = self._require(payment_id)
            if payment.payment_status != PaymentStatus.COMPLETED:
                raise PaymentNotCompleted(
                    f"Payment {payment_id} is {payment.payment_status.value}, not completed", payment_id=payment_id
                )

            amount = payment.amount if amount is None else _to_amount(amount, "amount")
            if amount <= 0 or amount > payment.amount:
                raise ValidationError(
                    f"refund amount must be > 0 and <= {payment.amount}", field="amount"
                )

            payment = self.store.save_payment(
                replace(
                    payment,
                    payment_status=PaymentStatus.REFUNDED,
                    refunded_amount=amount,
                    updated_at=utcnow(),
                )
            )

        logger.info("Payment %s refunded (%s)", payment_id, amount)
        return payment

    def get_payment(self, payment_id: str) -> Payment:
        return self._require(payment_id)

    def payment_history(self, user_id: str) -> List[Payment]:
        return self.store.list_payments_for_user(user_id)

    def _require(self, payment_id: str) -> Payment:
        payment: Optional[Payment] = self.store.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        return payment
