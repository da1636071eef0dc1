"""
Purpose: The error taxonomy shared by every part of the logistics core.
What it does:
Every business failure is a LogisticsError subclass carrying a stable
machine-readable `kind` and a `category`. The HTTP layer maps categories to
status codes; callers switch on `kind`.

Categories:
- validation            bad input shape, rejected before touching state
- precondition          business rule violated (no active rule, driver busy ...)
- forbidden             actor may not perform the write
- not_found             unknown parcel / driver / payment / rule id
- conflict              lost a race or would double-settle
- external_unavailable  every provider in a fallback chain failed
"""

from typing import Any, Dict, List, Optional, Tuple

VALIDATION = "validation"
PRECONDITION = "precondition"
FORBIDDEN = "forbidden"
NOT_FOUND = "not_found"
CONFLICT = "conflict"
EXTERNAL_UNAVAILABLE = "external_unavailable"


class LogisticsError(Exception):
    """Base class for all core errors."""

    kind: str = "logistics_error"
    category: str = PRECONDITION

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


# --- Validation ---

class ValidationError(LogisticsError):
    kind = "validation_error"
    category = VALIDATION

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, **context)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


# --- Not found ---

class NotFoundError(LogisticsError):
    kind = "not_found"
    category = NOT_FOUND


class ParcelNotFound(NotFoundError):
    kind = "parcel_not_found"


class DriverNotFound(NotFoundError):
    kind = "driver_not_found"


class PaymentNotFound(NotFoundError):
    kind = "payment_not_found"


class PricingRuleNotFound(NotFoundError):
    kind = "pricing_rule_not_found"


# --- Preconditions ---

class PreconditionError(LogisticsError):
    kind = "precondition_failed"
    category = PRECONDITION


class NoActivePricingRule(PreconditionError):
    kind = "no_active_pricing_rule"


class ParcelNotAvailable(PreconditionError):
    kind = "parcel_not_available"


class DriverBusy(PreconditionError):
    kind = "driver_busy"


class DriverHasActiveAssignment(PreconditionError):
    kind = "driver_has_active_assignment"


class InvalidStatusTransition(PreconditionError):
    kind = "invalid_status_transition"


class AmountMismatch(PreconditionError):
    kind = "amount_mismatch"


class PaymentNotCompleted(PreconditionError):
    kind = "payment_not_completed"


class InvalidPaymentTransition(PreconditionError):
    kind = "invalid_payment_transition"


class PaymentVerificationFailed(PreconditionError):
    """The provider did not vouch for the transaction; nothing was settled."""

    kind = "payment_verification_failed"


# --- Forbidden ---

class StatusUpdateForbidden(LogisticsError):
    kind = "status_update_forbidden"
    category = FORBIDDEN


# --- Conflicts ---

class ConflictError(LogisticsError):
    kind = "conflict"
    category = CONFLICT


class ParcelAlreadyAssigned(ConflictError):
    kind = "parcel_already_assigned"


class ParcelAlreadyPaid(ConflictError):
    kind = "parcel_already_paid"


class PaymentAlreadySettled(ConflictError):
    kind = "payment_already_settled"


class TrackingIdTaken(ConflictError):
    kind = "tracking_id_taken"


class DriverAlreadyRegistered(ConflictError):
    kind = "driver_already_registered"


# --- External providers ---

class ExternalUnavailable(LogisticsError):
    kind = "external_unavailable"
    category = EXTERNAL_UNAVAILABLE


class GeocodeUnavailable(ExternalUnavailable):
    """Raised when every geocoding provider failed for an address."""

    kind = "geocode_unavailable"

    def __init__(self, address: str, attempts: List[Tuple[str, str]]):
        summary = "; ".join(f"{name}: {reason}" for name, reason in attempts) or "no providers configured"
        super().__init__(f"Could not geocode '{address}' ({summary})", address=address)
        self.address = address
        self.attempts = attempts


class PaymentProviderError(ExternalUnavailable):
    kind = "payment_provider_error"


class PaymentProviderUnavailable(ExternalUnavailable):
    kind = "payment_provider_unavailable"
