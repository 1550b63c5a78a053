"""Category to pricing tier lookups used by the catalogue and the engine."""

from typing import Any, Dict, List, Optional

from ...config.pricing import (
  CATEGORY_DESCRIPTIONS,
  PREMIUM_CATEGORIES,
  STANDARD_CATEGORIES,
  PricingTierName,
)
from .ladder import LadderConfiguration

_CATEGORY_TIERS = {
  **{name.lower(): PricingTierName.STANDARD for name in STANDARD_CATEGORIES},
  **{name.lower(): PricingTierName.PREMIUM for name in PREMIUM_CATEGORIES},
}


def resolve_pricing_tier(category: Optional[str]) -> Optional[str]:
  """Return the pricing tier for a catalogue category, or None if untiered."""
  if not category:
    return None
  return _CATEGORY_TIERS.get(category.strip().lower())


def get_max_quantity(
  pricing_tier: Optional[str], config: LadderConfiguration
) -> Optional[int]:
  """Max units per SKU for a tier; None means no limit."""
  return config.max_quantity_for(pricing_tier)


def _ladder_rows(pricing_tier: str, config: LadderConfiguration) -> List[str]:
  if pricing_tier == PricingTierName.STANDARD:
    return [f"{tier.label()}: £{tier.value:.2f}" for tier in config.standard.tiers]
  rows = []
  for tier in config.premium.tiers:
    if tier.value > 0:
      rows.append(f"{tier.label()}: {tier.value:.0f}% off")
    else:
      rows.append(f"{tier.label()}: list price")
  return rows


def get_category_pricing_info(
  category: str, config: LadderConfiguration
) -> Dict[str, Any]:
  """Pricing summary for a product category page."""
  pricing_tier = resolve_pricing_tier(category)

  if pricing_tier == PricingTierName.PREMIUM:
    steps = ", ".join(
      f"{tier.value:.0f}% off at {tier.min_quantity}+"
      for tier in config.premium.tiers
      if tier.value > 0
    )
    description = f"Volume discount - {steps}" if steps else CATEGORY_DESCRIPTIONS[None]
  else:
    description = CATEGORY_DESCRIPTIONS[pricing_tier]

  return {
    "category": category,
    "pricing_tier": pricing_tier,
    "max_quantity": get_max_quantity(pricing_tier, config),
    "description": description,
    "tiers": _ladder_rows(pricing_tier, config) if pricing_tier else [],
  }
