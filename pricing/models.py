"""
Purpose: Pricing rule and quote models.
Rule: at most one PricingRule is active at any time. Activation is a single
store-level operation (see PricingCalculator.activate_rule).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from core.errors import ValidationError

DEFAULT_WEIGHT_INCLUDED_KG = Decimal("5")

# decimal places each field keeps once stored
FIELD_PLACES = {
    "base_price": 2,
    "price_per_km": 4,
    "price_per_kg": 4,
    "weight_included_kg": 3,
    "express_surcharge": 2,
    "insurance_fee": 2,
    "min_price": 2,
    "max_price": 2,
}


@dataclass(frozen=True)
class PricingRule:
    id: str
    rule_name: str
    base_price: Decimal
    price_per_km: Decimal
    price_per_kg: Decimal
    express_surcharge: Decimal
    insurance_fee: Decimal
    min_price: Decimal
    weight_included_kg: Decimal = DEFAULT_WEIGHT_INCLUDED_KG
    max_price: Optional[Decimal] = None
    is_active: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def validate(self) -> PricingRule:
        if not self.rule_name or not self.rule_name.strip():
            raise ValidationError("rule_name must not be blank", field="rule_name")

        for name in ("base_price", "price_per_km", "price_per_kg", "express_surcharge",
                     "insurance_fee", "min_price", "weight_included_kg"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be >= 0", field=name)

        if self.max_price is not None:
            if self.max_price < 0:
                raise ValidationError("max_price must be >= 0", field="max_price")
            if self.max_price < self.min_price:
                raise ValidationError("max_price must be >= min_price", field="max_price")

        for name, places in FIELD_PLACES.items():
            value = getattr(self, name)
            if value is not None and value.quantize(Decimal(1).scaleb(-places)) != value:
                raise ValidationError(f"{name} allows at most {places} decimal places", field=name)
        return self

    @classmethod
    def new(cls, rule_name: str, base_price, price_per_km, price_per_kg, express_surcharge,
            insurance_fee, min_price, weight_included_kg=DEFAULT_WEIGHT_INCLUDED_KG,
            max_price=None) -> PricingRule:
        return cls(
            id=str(uuid.uuid4()),
            rule_name=rule_name,
            base_price=Decimal(str(base_price)),
            price_per_km=Decimal(str(price_per_km)),
            price_per_kg=Decimal(str(price_per_kg)),
            express_surcharge=Decimal(str(express_surcharge)),
            insurance_fee=Decimal(str(insurance_fee)),
            min_price=Decimal(str(min_price)),
            weight_included_kg=Decimal(str(weight_included_kg)),
            max_price=None if max_price is None else Decimal(str(max_price)),
        ).validate()


@dataclass(frozen=True)
class PricingRuleUpdate:
    """
    Explicit field-by-field edit of a rule. None means "leave unchanged";
    clear_max_price removes the upper clamp. Activation is not part of an
    update and goes through activate_rule.
    """
    rule_name: Optional[str] = None
    base_price: Optional[Decimal] = None
    price_per_km: Optional[Decimal] = None
    price_per_kg: Optional[Decimal] = None
    weight_included_kg: Optional[Decimal] = None
    express_surcharge: Optional[Decimal] = None
    insurance_fee: Optional[Decimal] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    clear_max_price: bool = False

    def apply(self, rule: PricingRule) -> PricingRule:
        max_price = rule.max_price
        if self.clear_max_price:
            max_price = None
        elif self.max_price is not None:
            max_price = self.max_price

        return PricingRule(
            id=rule.id,
            rule_name=self.rule_name if self.rule_name is not None else rule.rule_name,
            base_price=self.base_price if self.base_price is not None else rule.base_price,
            price_per_km=self.price_per_km if self.price_per_km is not None else rule.price_per_km,
            price_per_kg=self.price_per_kg if self.price_per_kg is not None else rule.price_per_kg,
            weight_included_kg=(self.weight_included_kg if self.weight_included_kg is not None
                                else rule.weight_included_kg),
            express_surcharge=(self.express_surcharge if self.express_surcharge is not None
                               else rule.express_surcharge),
            insurance_fee=self.insurance_fee if self.insurance_fee is not None else rule.insurance_fee,
            min_price=self.min_price if self.min_price is not None else rule.min_price,
            max_price=max_price,
            is_active=rule.is_active,
            created_at=rule.created_at,
        ).validate()


@dataclass(frozen=True)
class PriceBreakdown:
    """
    Diagnostic only: after clamping, the parts need not sum to the final price.
    """
    base: Decimal
    distance: Decimal
    weight: Decimal
    express: Decimal
    insurance: Decimal

    @property
    def total(self) -> Decimal:
        return self.base + self.distance + self.weight + self.express + self.insurance


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    distance_km: float
    breakdown: PriceBreakdown
    duration_minutes: Optional[float] = None
    rule_id: Optional[str] = None
