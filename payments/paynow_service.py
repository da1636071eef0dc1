"""
Purpose: Thin gateway over the Paynow SDK.
What it does:
- registers a transaction (one line item: the parcel price) and returns the
  checkout handle (redirect URL + poll URL)
- asks Paynow, server to server, what happened to a transaction

Every SDK call runs on a worker thread and is abandoned after `timeout`
seconds; SDK failures, declines and timeouts all surface as PaymentProviderError.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from decimal import Decimal, InvalidOperation

from paynow import Paynow

from core.errors import PaymentProviderError
from payments.models import CheckoutHandle, Payment, ProviderTransactionStatus

logger = logging.getLogger(__name__)


class PaynowGateway:
    def __init__(
        self,
        integration_id: str,
        integration_key: str,
        return_url: str,
        result_url: str,
        auth_email: str = None,
        timeout: float = 10,
        paynow=None,
    ):
        self.paynow = paynow or Paynow(integration_id, integration_key, return_url, result_url)
        self.auth_email = auth_email
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="paynow")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _call(self, what: str, func, *args):
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.error("Paynow %s timed out after %ss", what, self.timeout)
            raise PaymentProviderError(f"Paynow {what} timed out") from exc
        except Exception as exc:
            logger.error(f"Paynow Exception during {what}: {exc}")
            raise PaymentProviderError(f"Paynow {what} failed: {exc}") from exc

    def register(self, payment: Payment) -> CheckoutHandle:
        """
        Create a new payment in Paynow. The payment id is the merchant
        reference, which is what the result callback hands back to us.
        """
        paynow_payment = self.paynow.create_payment(payment.id, self.auth_email)

        # For simplicity, adding one line item for the total
        paynow_payment.add(f"Parcel {payment.parcel_id}", float(payment.amount))

        response = self._call("initiation", self.paynow.send, paynow_payment)
        if not response.success:
            error = getattr(response, "error", None) or "Paynow error"
            logger.error("Paynow rejected payment %s: %s", payment.id, error)
            raise PaymentProviderError(f"Paynow rejected the payment: {error}", payment_id=payment.id)

        return CheckoutHandle(
            redirect_url=getattr(response, "redirect_url", None),
            poll_url=response.poll_url,
            instructions=getattr(response, "instructions", None),
        )

    def check_status(self, poll_url: str) -> ProviderTransactionStatus:
        """
        Check the status of a transaction
        """
        return self._call("status check", self._read_status, poll_url)

    def _read_status(self, poll_url: str) -> ProviderTransactionStatus:
        # runs inside _call, so a malformed SDK response surfaces as PaymentProviderError
        status = self.paynow.check_transaction_status(poll_url)

        amount = getattr(status, "amount", None)
        try:
            amount = Decimal(str(amount)) if amount is not None else None
        except InvalidOperation:
            amount = None

        return ProviderTransactionStatus(
            paid=bool(status.paid),
            status=str(status.status),
            reference=getattr(status, "reference", None),
            provider_transaction_id=getattr(status, "paynow_reference", None),
            amount=amount,
        )
