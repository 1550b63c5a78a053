"""Catalogue models: products and the pricing tables behind the ladders."""

from .pricing_ladder import PremiumPricingTier, PricingRule, StandardPricingTier
from .product import Product

__all__ = [
  "PremiumPricingTier",
  "PricingRule",
  "Product",
  "StandardPricingTier",
]
