"""
Tier ladders.

A ladder is an ordered list of quantity bands. The standard ladder maps the
combined quantity of all standard items to one flat unit price; the premium
ladder maps a single SKU's quantity to a percentage off its own base price.
"""

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from ...config.pricing import PricingTierName
from ...exceptions import PricingConfigurationError


@dataclass(frozen=True)
class PricingTier:
  """One band of a ladder.

  `value` is a unit price in pounds on the standard ladder and a discount
  percentage on the premium ladder.
  """

  min_quantity: int
  max_quantity: Optional[int]
  value: Decimal

  def label(self) -> str:
    if self.max_quantity is None:
      return f"{self.min_quantity}+ units"
    return f"{self.min_quantity}-{self.max_quantity} units"


@dataclass(frozen=True)
class TierLadder:
  name: str
  tiers: tuple[PricingTier, ...]

  def lookup(self, quantity: int) -> PricingTier:
    """Return the band for a quantity.

    Picks the highest band whose min_quantity <= quantity, so a boundary
    belongs to the higher band and anything past the top clamps to the last
    band. Quantities below the first band (including 0) get the first band.
    """
    index = bisect_right([tier.min_quantity for tier in self.tiers], quantity) - 1
    return self.tiers[max(index, 0)]


@dataclass(frozen=True)
class LadderConfiguration:
  """Everything the pricing engine reads, loaded as one snapshot."""

  standard: TierLadder
  premium: TierLadder
  max_qty_standard: int
  max_qty_premium: int
  source: str = "static"
  loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

  def max_quantity_for(self, pricing_tier: Optional[str]) -> Optional[int]:
    if pricing_tier == PricingTierName.STANDARD:
      return self.max_qty_standard
    if pricing_tier == PricingTierName.PREMIUM:
      return self.max_qty_premium
    return None


def build_ladder(
  name: str,
  rows: Iterable[Sequence],
  source: str = "static",
) -> TierLadder:
  """Build and validate a ladder from (min, max, value) rows.

  Raises:
      PricingConfigurationError: if the ladder is empty or not well ordered
  """
  tiers = tuple(
    PricingTier(
      min_quantity=int(row[0]),
      max_quantity=int(row[1]) if row[1] is not None else None,
      value=Decimal(str(row[2])),
    )
    for row in rows
  )
  validate_ladder(name, tiers, source)
  return TierLadder(name=name, tiers=tiers)


def validate_ladder(name: str, tiers: Sequence[PricingTier], source: str) -> None:
  if not tiers:
    raise PricingConfigurationError(source, f"{name} ladder has no tiers")

  for previous, current in zip(tiers, tiers[1:]):
    if current.min_quantity <= previous.min_quantity:
      raise PricingConfigurationError(
        source, f"{name} ladder minimums must be strictly ascending"
      )
    if name == PricingTierName.STANDARD and current.value > previous.value:
      raise PricingConfigurationError(
        source, f"{name} ladder unit price rises at {current.min_quantity} units"
      )
    if name == PricingTierName.PREMIUM and current.value < previous.value:
      raise PricingConfigurationError(
        source, f"{name} ladder discount falls at {current.min_quantity} units"
      )

  for tier in tiers:
    if tier.min_quantity < 0:
      raise PricingConfigurationError(source, f"{name} ladder has a negative minimum")
    if tier.value < 0:
      raise PricingConfigurationError(source, f"{name} ladder has a negative value")
    if name == PricingTierName.PREMIUM and tier.value > 100:
      raise PricingConfigurationError(source, f"{name} ladder discount exceeds 100%")
