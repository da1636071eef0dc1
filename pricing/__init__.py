"""
Pricing domain package.

Public API:
- Models: PricingRule, PricingRuleUpdate, PriceQuote, PriceBreakdown
- Arithmetic: compute_price (pricing.calculator)
"""
from .models import PriceBreakdown, PriceQuote, PricingRule, PricingRuleUpdate

__all__ = ["PricingRule",
           "PricingRuleUpdate",
           "PriceQuote",
           "PriceBreakdown",
           ]
