"""
Purpose: Wire the logistics core together.
What it does:
build_core(settings, store) builds the geocoding chain, the distance
estimator, the pricing calculator, the dispatcher and the payment reconciler
around one explicitly constructed store handle. LogisticsCore.close() shuts
down background workers and the store.

Collaborators can be injected (tests pass fakes for every external provider).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.config import CoreSettings
from dispatch.dispatcher import Dispatcher
from dispatch.notifications import BackgroundNotificationSink, NotificationSink
from payments.paynow_service import PaynowGateway
from payments.reconciliation import PaymentReconciler
from pricing.calculator import PricingCalculator
from routing.eta_service import default_estimate_policy
from routing.geocoding import build_geocoding_resolver
from routing.route_service import build_distance_estimator
from storage.base import LogisticsStore

logger = logging.getLogger(__name__)


@dataclass
class LogisticsCore:
    store: LogisticsStore
    pricing: PricingCalculator
    dispatcher: Dispatcher
    payments: PaymentReconciler
    notifier: NotificationSink

    def close(self) -> None:
        self.notifier.close()
        gateway = self.payments.gateway
        if gateway is not None and hasattr(gateway, "close"):
            gateway.close()
        self.store.close()


def build_gateway(settings: CoreSettings) -> Optional[PaynowGateway]:
    if not settings.paynow_configured:
        logger.warning("Paynow credentials not set, payments run in degraded mode (no checkout)")
        return None
    return PaynowGateway(
        settings.paynow_integration_id,
        settings.paynow_integration_key,
        settings.paynow_return_url,
        settings.paynow_result_url,
        auth_email=settings.paynow_auth_email,
        timeout=settings.external_timeout_seconds,
    )


def build_core(
    settings: CoreSettings,
    store: LogisticsStore,
    notifier: Optional[NotificationSink] = None,
    resolver=None,
    estimator=None,
    gateway=None,
) -> LogisticsCore:
    settings.validate()

    resolver = resolver or build_geocoding_resolver(settings)
    estimator = estimator or build_distance_estimator(settings)
    if gateway is None:
        gateway = build_gateway(settings)
    notifier = notifier or BackgroundNotificationSink()

    estimate_policy = default_estimate_policy()
    pricing = PricingCalculator(store, resolver, estimator)
    dispatcher = Dispatcher(store, pricing, notifier=notifier, estimate_policy=estimate_policy)
    payments = PaymentReconciler(store, gateway=gateway)

    return LogisticsCore(
        store=store,
        pricing=pricing,
        dispatcher=dispatcher,
        payments=payments,
        notifier=notifier,
    )
