from decimal import Decimal

import pytest

from core.errors import GeocodeUnavailable, PaymentProviderError
from dispatch.dispatcher import Dispatcher
from dispatch.notifications import NotificationSink
from drivers.models import DriverStatus
from parcels.models import NewParcelRequest, ServiceType
from payments.models import CheckoutHandle, ProviderTransactionStatus
from payments.reconciliation import PaymentReconciler
from pricing.calculator import PricingCalculator
from pricing.models import PricingRule
from routing.models import Coordinate, DistanceResult, DistanceSource
from routing.osrm_client import OSRMError
from storage.memory import InMemoryStore

HARARE_CBD = Coordinate(-17.8292, 31.0522)
BORROWDALE = Coordinate(-17.7605, 31.0890)


class FakeResolver:
    """Known addresses resolve, anything else fails like a dead geocoder chain."""

    def __init__(self, known=None):
        self.known = known or {"Harare CBD": HARARE_CBD, "Borrowdale": BORROWDALE}
        self.calls = []

    def resolve(self, address):
        self.calls.append(address)
        if address not in self.known:
            raise GeocodeUnavailable(address, [("fake", "unknown address")])
        return self.known[address]


class FakeEstimator:
    def __init__(self, distance_km=12.0, duration_minutes=None):
        self.distance_km = distance_km
        self.duration_minutes = duration_minutes
        self.calls = 0

    def estimate(self, pickup, delivery):
        self.calls += 1
        source = DistanceSource.STRAIGHT_LINE if self.duration_minutes is None else DistanceSource.ROAD
        return DistanceResult(self.distance_km, self.duration_minutes, source)


class MockOSRM:
    """Stands in for OSRMClient.compute_route."""

    def __init__(self, distance_m=12_345.0, duration_s=1_500.0, fail=False):
        self.distance_m = distance_m
        self.duration_s = duration_s
        self.fail = fail
        self.calls = []

    def compute_route(self, coordinates):
        self.calls.append(coordinates)
        if self.fail:
            raise OSRMError("OSRM request failed: connection refused")
        return {"distance": self.distance_m, "duration": self.duration_s}


class FakeGateway:
    """
    Records registrations; check_status answers whatever `status` is set to.
    """

    def __init__(self):
        self.registered = []
        self.polled = []
        self.status = None
        self.fail_register = False

    def register(self, payment):
        if self.fail_register:
            raise PaymentProviderError("Paynow initiation timed out")
        self.registered.append(payment)
        return CheckoutHandle(
            redirect_url=f"https://paynow.example/pay/{payment.id}",
            poll_url=f"https://paynow.example/poll/{payment.id}",
        )

    def check_status(self, poll_url):
        self.polled.append(poll_url)
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    def paid(self, payment, amount=None, reference=None):
        self.status = ProviderTransactionStatus(
            paid=True,
            status="Paid",
            reference=reference or payment.provider_reference,
            provider_transaction_id="PN-778899",
            amount=payment.amount if amount is None else amount,
        )


class RecordingSink(NotificationSink):
    def __init__(self):
        self.status_updates = []
        self.assignments = []

    def notify_status_update(self, parcel, entry):
        self.status_updates.append((parcel.id, entry.status))

    def notify_driver_assignment(self, driver, parcel):
        self.assignments.append((driver.id, parcel.id))


def standard_rule(**overrides) -> PricingRule:
    """base 500, 50/km, 100/kg above 5kg, express +300, insurance +200, floor 1000."""
    values = dict(
        rule_name="Standard",
        base_price="500",
        price_per_km="50",
        price_per_kg="100",
        express_surcharge="300",
        insurance_fee="200",
        min_price="1000",
    )
    values.update(overrides)
    return PricingRule.new(**values)


@pytest.fixture
def store():
    store = InMemoryStore()
    yield store
    store.close()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def estimator():
    return FakeEstimator(distance_km=12.0)


@pytest.fixture
def pricing(store, resolver, estimator):
    calculator = PricingCalculator(store, resolver, estimator)
    calculator.create_rule(standard_rule(), activate=True)
    return calculator


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(store, pricing, sink):
    return Dispatcher(store, pricing, notifier=sink)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def reconciler(store, gateway):
    return PaymentReconciler(store, gateway=gateway)


@pytest.fixture
def parcel_request():
    def make(**overrides):
        values = dict(
            sender_id="customer_1",
            recipient_name="Tendai Moyo",
            recipient_phone="+263771234567",
            pickup_address="Harare CBD",
            delivery_address="Borrowdale",
            weight=Decimal("3"),
            service_type=ServiceType.STANDARD,
        )
        values.update(overrides)
        return NewParcelRequest(**values)
    return make


@pytest.fixture
def parcel(dispatcher, parcel_request):
    return dispatcher.create_parcel(parcel_request())


@pytest.fixture
def make_driver(dispatcher):
    def make(user_id, status=DriverStatus.AVAILABLE):
        return dispatcher.register_driver(user_id, vehicle_type="Bike", status=status)
    return make
