"""
Payments domain package.

Public API:
- Models: Payment, PaymentStatus, PaymentMethod, PaymentInitiation, CheckoutHandle
- Reconciliation: PaymentReconciler (payments.reconciliation)
- Provider gateway: PaynowGateway (payments.paynow_service)
"""
from .models import (
    CheckoutHandle,
    Payment,
    PaymentInitiation,
    PaymentMethod,
    PaymentStatus,
    ProviderTransactionStatus,
)

__all__ = ["Payment",
           "PaymentStatus",
           "PaymentMethod",
           "PaymentInitiation",
           "CheckoutHandle",
           "ProviderTransactionStatus",
           ]
