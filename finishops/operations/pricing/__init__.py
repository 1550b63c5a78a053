"""Tiered pricing: ladders, their sources and cache, and the engine."""

from .cache import LadderCache
from .catalog import get_category_pricing_info, get_max_quantity, resolve_pricing_tier
from .engine import CartItem, PricedLineItem, PricingEngine, PricingResult
from .ladder import LadderConfiguration, PricingTier, TierLadder, build_ladder
from .sources import (
  DatabaseLadderSource,
  LadderSource,
  StaticLadderSource,
  get_ladder_source,
)

__all__ = [
  "CartItem",
  "DatabaseLadderSource",
  "LadderCache",
  "LadderConfiguration",
  "LadderSource",
  "PricedLineItem",
  "PricingEngine",
  "PricingResult",
  "PricingTier",
  "StaticLadderSource",
  "TierLadder",
  "build_ladder",
  "get_category_pricing_info",
  "get_ladder_source",
  "get_max_quantity",
  "resolve_pricing_tier",
]
