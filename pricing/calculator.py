"""
Purpose: Turn two addresses and parcel attributes into a price.
What it does:
- resolves both addresses (routing.geocoding) and estimates the road distance
  (routing.route_service)
- applies the single active PricingRule:
    price = base + km * per_km + weight_charge (+ express) (+ insurance)
    weight_charge = 0 up to and including weight_included_kg,
                    then (weight - included) * per_kg
  clamped to [min_price, max_price] and rounded half-up to cents
- owns pricing-rule administration, including the atomic activation swap

compute_price() is the pure arithmetic; PricingCalculator adds the I/O.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Tuple

from core.errors import NoActivePricingRule, PricingRuleNotFound, ValidationError
from parcels.models import ServiceType
from pricing.models import PriceBreakdown, PriceQuote, PricingRule, PricingRuleUpdate

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def weight_charge(rule: PricingRule, weight: Decimal) -> Decimal:
    """Inclusive boundary: weight == weight_included_kg costs nothing."""
    if weight <= rule.weight_included_kg:
        return ZERO
    return (weight - rule.weight_included_kg) * rule.price_per_kg


def compute_price(
    rule: PricingRule,
    distance_km: float,
    weight,
    service_type: ServiceType,
    insurance: bool = False,
) -> Tuple[Decimal, PriceBreakdown]:
    """
    Returns (final price, breakdown). The breakdown is diagnostic: when the
    floor or ceiling kicks in, its parts no longer add up to the price.
    """
    distance = Decimal(str(distance_km))
    weight = Decimal(str(weight))
    service_type = ServiceType(service_type)

    base = rule.base_price
    distance_part = distance * rule.price_per_km
    weight_part = weight_charge(rule, weight)
    express_part = rule.express_surcharge if service_type == ServiceType.EXPRESS else ZERO
    insurance_part = rule.insurance_fee if insurance else ZERO

    price = base + distance_part + weight_part + express_part + insurance_part

    if price < rule.min_price:
        price = rule.min_price
    if rule.max_price is not None and price > rule.max_price:
        price = rule.max_price

    breakdown = PriceBreakdown(
        base=to_money(base),
        distance=to_money(distance_part),
        weight=to_money(weight_part),
        express=to_money(express_part),
        insurance=to_money(insurance_part),
    )
    return to_money(price), breakdown


class PricingCalculator:
    """
    Wires the geocoding resolver and the distance estimator to the active rule.
    """

    def __init__(self, store, resolver, estimator):
        self.store = store
        self.resolver = resolver
        self.estimator = estimator

    # --- pricing rules ---

    def get_active_rule(self) -> PricingRule:
        rule = self.store.get_active_pricing_rule()
        if rule is None:
            raise NoActivePricingRule("No active pricing rule found")
        return rule

    def activate_rule(self, rule_id: str) -> PricingRule:
        rule = self.store.activate_pricing_rule(rule_id)
        logger.info("Pricing rule %s (%s) is now active", rule.id, rule.rule_name)
        return rule

    def create_rule(self, rule: PricingRule, activate: bool = False) -> PricingRule:
        rule = self.store.add_pricing_rule(rule.validate())
        if activate:
            rule = self.activate_rule(rule.id)
        return rule

    def update_rule(self, rule_id: str, update: PricingRuleUpdate) -> PricingRule:
        current = self.store.get_pricing_rule(rule_id)
        if current is None:
            raise PricingRuleNotFound(f"Pricing rule {rule_id} not found", rule_id=rule_id)
        return self.store.save_pricing_rule(update.apply(current))

    def list_rules(self) -> List[PricingRule]:
        return self.store.list_pricing_rules()

    # --- quoting ---

    def price(
        self,
        pickup_address: str,
        delivery_address: str,
        weight,
        service_type: ServiceType,
        insurance: bool = False,
    ) -> PriceQuote:
        try:
            weight = Decimal(str(weight))
        except ArithmeticError as exc:
            raise ValidationError(f"weight '{weight}' is not a number", field="weight") from exc
        if not weight.is_finite() or weight <= 0:
            raise ValidationError("weight must be greater than 0", field="weight")

        # one read: a concurrent activation is seen either fully or not at all
        rule = self.get_active_rule()

        pickup = self.resolver.resolve(pickup_address)
        delivery = self.resolver.resolve(delivery_address)
        distance = self.estimator.estimate(pickup, delivery)

        price, breakdown = compute_price(rule, distance.distance_km, weight, service_type, insurance)
        logger.info(
            "Quoted %s for %.1fkm, %skg, %s (rule %s, %s distance)",
            price, distance.distance_km, weight, ServiceType(service_type).value, rule.id, distance.source.value,
        )

        return PriceQuote(
            price=price,
            distance_km=distance.distance_km,
            breakdown=breakdown,
            duration_minutes=distance.duration_minutes,
            rule_id=rule.id,
        )
