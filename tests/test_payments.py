import threading
from decimal import Decimal
from types import SimpleNamespace

import pytest

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
from payments.models import PaymentMethod, PaymentStatus, ProviderTransactionStatus
from payments.paynow_service import PaynowGateway
from payments.reconciliation import PaymentReconciler


@pytest.fixture
def pending(reconciler, parcel):
    return reconciler.initiate(parcel.id, "customer_1", "1100.00").payment


# --- initiation ---

def test_initiate_registers_with_provider_first(reconciler, gateway, parcel, store):
    initiation = reconciler.initiate(parcel.id, "customer_1", Decimal("1100"))

    payment = initiation.payment
    assert not initiation.degraded
    assert initiation.checkout.redirect_url.endswith(payment.id)
    assert payment.payment_status == PaymentStatus.PENDING
    assert payment.provider_reference == payment.id
    assert payment.poll_url == initiation.checkout.poll_url
    assert store.get_payment(payment.id) == payment
    assert gateway.registered[0].id == payment.id


def test_initiate_checks_ownership_and_amount(reconciler, parcel):
    with pytest.raises(ParcelNotFound):
        reconciler.initiate("missing", "customer_1", "1100")
    with pytest.raises(ParcelNotFound):
        reconciler.initiate(parcel.id, "someone_else", "1100")
    with pytest.raises(AmountMismatch):
        reconciler.initiate(parcel.id, "customer_1", "999.99")
    with pytest.raises(ValidationError):
        reconciler.initiate(parcel.id, "customer_1", "eleven hundred")
    with pytest.raises(ValidationError):
        reconciler.initiate(parcel.id, "customer_1", "1100", payment_method="bitcoin")


def test_failed_registration_leaves_no_payment(reconciler, gateway, parcel, store):
    gateway.fail_register = True

    with pytest.raises(PaymentProviderError):
        reconciler.initiate(parcel.id, "customer_1", "1100")
    assert store.list_payments_for_user("customer_1") == []


def test_degraded_without_provider(store, parcel):
    reconciler = PaymentReconciler(store, gateway=None)
    initiation = reconciler.initiate(parcel.id, "customer_1", "1100")

    assert initiation.degraded
    assert initiation.checkout is None
    assert initiation.payment.payment_status == PaymentStatus.PENDING


def test_cash_on_delivery_skips_provider(reconciler, gateway, parcel):
    initiation = reconciler.initiate(parcel.id, "customer_1", "1100", payment_method="cod")

    assert initiation.degraded
    assert initiation.payment.payment_method == PaymentMethod.COD
    assert gateway.registered == []


def test_initiate_refused_once_parcel_is_paid(reconciler, pending, parcel):
    reconciler.confirm(pending.id, "TX-1")

    with pytest.raises(ParcelAlreadyPaid):
        reconciler.initiate(parcel.id, "customer_1", "1100")


# --- confirmation ---

def test_confirm_is_idempotent_for_same_transaction(reconciler, pending):
    first = reconciler.confirm(pending.id, "TX-1")
    again = reconciler.confirm(pending.id, "TX-1")

    assert first.payment_status == PaymentStatus.COMPLETED
    assert first.transaction_id == "TX-1"
    assert again == first


def test_confirm_with_other_transaction_conflicts(reconciler, pending):
    reconciler.confirm(pending.id, "TX-1")

    with pytest.raises(PaymentAlreadySettled):
        reconciler.confirm(pending.id, "TX-2")


def test_second_payment_for_same_parcel_cannot_settle(reconciler, parcel, store):
    first = reconciler.initiate(parcel.id, "customer_1", "1100").payment
    second = reconciler.initiate(parcel.id, "customer_1", "1100").payment
    reconciler.confirm(first.id, "TX-1")

    with pytest.raises(PaymentAlreadySettled):
        reconciler.confirm(second.id, "TX-2")
    assert store.get_payment(second.id).payment_status == PaymentStatus.PENDING


def test_racing_confirmations_settle_once(reconciler, parcel, store):
    payments = [reconciler.initiate(parcel.id, "customer_1", "1100").payment for _ in range(6)]
    barrier = threading.Barrier(len(payments))
    settled = []

    def confirm(payment):
        barrier.wait()
        try:
            reconciler.confirm(payment.id, f"TX-{payment.id}")
            settled.append(payment.id)
        except PaymentAlreadySettled:
            pass

    threads = [threading.Thread(target=confirm, args=(payment,)) for payment in payments]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(settled) == 1
    assert store.get_completed_payment_for_parcel(parcel.id).id == settled[0]


def test_confirm_errors(reconciler, pending):
    with pytest.raises(PaymentNotFound):
        reconciler.confirm("missing", "TX-1")
    with pytest.raises(ValidationError):
        reconciler.confirm(pending.id, "  ")

    reconciler.confirm(pending.id, "TX-1")
    reconciler.refund(pending.id)
    with pytest.raises(InvalidPaymentTransition):
        reconciler.confirm(pending.id, "TX-1")


# --- provider callback ---

def test_callback_settles_only_after_provider_confirms(reconciler, gateway, pending):
    gateway.paid(pending)

    payment = reconciler.handle_provider_callback(pending.provider_reference)

    assert payment.payment_status == PaymentStatus.COMPLETED
    assert payment.transaction_id == "PN-778899"
    assert gateway.polled == [pending.poll_url]


def test_callback_for_unpaid_transaction(reconciler, gateway, pending, store):
    gateway.status = ProviderTransactionStatus(
        paid=False, status="Cancelled", reference=pending.id, provider_transaction_id="PN-1", amount=pending.amount
    )

    with pytest.raises(PaymentVerificationFailed):
        reconciler.handle_provider_callback(pending.provider_reference)
    assert store.get_payment(pending.id).payment_status == PaymentStatus.PENDING


@pytest.mark.parametrize("amount, reference", [
    (Decimal("1.00"), None),
    (None, "someone-elses-reference"),
])
def test_callback_with_mismatched_provider_answer(reconciler, gateway, pending, amount, reference):
    gateway.paid(pending, amount=amount, reference=reference)

    with pytest.raises(PaymentVerificationFailed):
        reconciler.handle_provider_callback(pending.provider_reference)


def test_callback_when_provider_unreachable(reconciler, gateway, pending):
    gateway.status = PaymentProviderError("Paynow status check timed out")

    with pytest.raises(PaymentVerificationFailed):
        reconciler.handle_provider_callback(pending.provider_reference)


def test_callback_for_unknown_reference(reconciler):
    with pytest.raises(PaymentNotFound):
        reconciler.handle_provider_callback("no-such-reference")


def test_callback_without_provider(store, reconciler, pending):
    unconfigured = PaymentReconciler(store, gateway=None)

    with pytest.raises(PaymentProviderUnavailable):
        unconfigured.handle_provider_callback(pending.provider_reference)


def test_repeated_callback_is_harmless(reconciler, gateway, pending):
    gateway.paid(pending)
    reconciler.handle_provider_callback(pending.provider_reference)

    again = reconciler.handle_provider_callback(pending.provider_reference)
    assert again.payment_status == PaymentStatus.COMPLETED
    assert len(gateway.polled) == 1


# --- refunds & history ---

def test_refund(reconciler, pending):
    reconciler.confirm(pending.id, "TX-1")

    refunded = reconciler.refund(pending.id, "500")

    assert refunded.payment_status == PaymentStatus.REFUNDED
    assert refunded.refunded_amount == Decimal("500")


def test_refund_rules(reconciler, pending):
    with pytest.raises(PaymentNotCompleted):
        reconciler.refund(pending.id)
    with pytest.raises(PaymentNotFound):
        reconciler.refund("missing")

    reconciler.confirm(pending.id, "TX-1")
    with pytest.raises(ValidationError):
        reconciler.refund(pending.id, "0")
    with pytest.raises(ValidationError):
        reconciler.refund(pending.id, "1100.01")

    reconciler.refund(pending.id)
    with pytest.raises(PaymentNotCompleted):
        reconciler.refund(pending.id)


def test_payment_history_is_per_user(reconciler, pending):
    assert [p.id for p in reconciler.payment_history("customer_1")] == [pending.id]
    assert reconciler.payment_history("customer_2") == []


# --- Paynow gateway ---

class FakePaynowPayment:
    def __init__(self, reference, email):
        self.reference = reference
        self.email = email
        self.items = []

    def add(self, title, amount):
        self.items.append((title, amount))


class FakePaynow:
    def __init__(self, init_response=None, status_response=None, error=None):
        self.init_response = init_response
        self.status_response = status_response
        self.error = error
        self.sent = []

    def create_payment(self, reference, email):
        return FakePaynowPayment(reference, email)

    def send(self, payment):
        if self.error:
            raise self.error
        self.sent.append(payment)
        return self.init_response

    def check_transaction_status(self, poll_url):
        if self.error:
            raise self.error
        return self.status_response


def gateway_with(paynow, timeout=5):
    return PaynowGateway("1234", "key", "http://return", "http://result", auth_email="pay@example.com",
                         timeout=timeout, paynow=paynow)


def test_gateway_register(pending):
    paynow = FakePaynow(init_response=SimpleNamespace(
        success=True, redirect_url="https://paynow.co.zw/pay", poll_url="https://paynow.co.zw/poll", instructions=None,
    ))
    handle = gateway_with(paynow).register(pending)

    assert handle.poll_url == "https://paynow.co.zw/poll"
    sent = paynow.sent[0]
    assert sent.reference == pending.id
    assert sent.items == [(f"Parcel {pending.parcel_id}", 1100.0)]


def test_gateway_register_declined(pending):
    paynow = FakePaynow(init_response=SimpleNamespace(success=False, error="Invalid amount"))

    with pytest.raises(PaymentProviderError) as exc_info:
        gateway_with(paynow).register(pending)
    assert "Invalid amount" in exc_info.value.message


def test_gateway_wraps_sdk_errors(pending):
    paynow = FakePaynow(error=ConnectionError("connection reset"))

    with pytest.raises(PaymentProviderError):
        gateway_with(paynow).register(pending)


def test_gateway_times_out(pending):
    release = threading.Event()

    class SlowPaynow(FakePaynow):
        def check_transaction_status(self, poll_url):
            release.wait(5)

    gateway = gateway_with(SlowPaynow(), timeout=0.05)
    try:
        with pytest.raises(PaymentProviderError) as exc_info:
            gateway.check_status("https://paynow.co.zw/poll")
        assert "timed out" in exc_info.value.message
    finally:
        release.set()
        gateway.close()


def test_gateway_status(pending):
    paynow = FakePaynow(status_response=SimpleNamespace(
        paid=True, status="Paid", amount="1100.00", reference=pending.id, paynow_reference="9911",
    ))
    status = gateway_with(paynow).check_status("https://paynow.co.zw/poll")

    assert status.paid
    assert status.amount == Decimal("1100.00")
    assert status.reference == pending.id
    assert status.provider_transaction_id == "9911"


def test_gateway_status_without_paid_flag(pending):
    paynow = FakePaynow(status_response=SimpleNamespace(error="Invalid hash"))
    gateway = gateway_with(paynow)

    with pytest.raises(PaymentProviderError) as exc_info:
        gateway.check_status("https://paynow.co.zw/poll")
    assert "status check failed" in exc_info.value.message
