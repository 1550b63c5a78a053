"""
Pricing engine.

Prices a cart under two regimes that apply side by side:

- standard: one flat unit price for every standard item, looked up on the
  standard ladder by the combined quantity of all standard items;
- premium: each item's own quantity picks a percentage off its own base
  price on the premium ladder.

Anything else is sold at its base price. Max-quantity violations are
reported in `validation_errors` but never stop pricing; the caller decides
whether to block.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ...config.pricing import PricingTierName
from ...exceptions import CartValidationError
from ...logger import get_logger
from ...utils.money import quantize_money
from .cache import LadderCache
from .catalog import resolve_pricing_tier
from .ladder import LadderConfiguration

logger = get_logger("finishops.pricing.engine")

_TIERS = (PricingTierName.STANDARD, PricingTierName.PREMIUM)


@dataclass(frozen=True)
class CartItem:
  product_code: str
  quantity: int
  base_price: Decimal
  pricing_tier: Optional[str] = None
  category: Optional[str] = None
  description: Optional[str] = None
  product_type: Optional[str] = None

  @property
  def resolved_tier(self) -> Optional[str]:
    """Explicit tier first, then the category's tier, else untiered."""
    if self.pricing_tier in _TIERS:
      return self.pricing_tier
    return resolve_pricing_tier(self.category)


@dataclass(frozen=True)
class PricedLineItem:
  product_code: str
  quantity: int
  base_price: Decimal
  unit_price: Decimal
  line_total: Decimal
  pricing_tier: Optional[str] = None
  category: Optional[str] = None
  description: Optional[str] = None
  product_type: Optional[str] = None
  discount_applied: Optional[str] = None

  @classmethod
  def from_cart_item(
    cls,
    item: CartItem,
    unit_price: Decimal,
    discount_applied: Optional[str] = None,
  ) -> "PricedLineItem":
    return cls(
      product_code=item.product_code,
      quantity=item.quantity,
      base_price=item.base_price,
      unit_price=unit_price,
      line_total=quantize_money(unit_price * item.quantity),
      pricing_tier=item.resolved_tier,
      category=item.category,
      description=item.description,
      product_type=item.product_type,
      discount_applied=discount_applied,
    )


@dataclass
class PricingResult:
  items: List[PricedLineItem] = field(default_factory=list)
  subtotal: Decimal = Decimal("0.00")
  validation_errors: List[str] = field(default_factory=list)

  @property
  def is_valid(self) -> bool:
    return not self.validation_errors

  def to_dict(self) -> Dict[str, Any]:
    return {
      "items": [
        {
          "product_code": item.product_code,
          "quantity": item.quantity,
          "pricing_tier": item.pricing_tier,
          "base_price": str(item.base_price),
          "unit_price": str(item.unit_price),
          "line_total": str(item.line_total),
          "discount_applied": item.discount_applied,
        }
        for item in self.items
      ],
      "subtotal": str(self.subtotal),
      "validation_errors": list(self.validation_errors),
      "is_valid": self.is_valid,
    }


def check_cart(items: Sequence[CartItem]) -> None:
  """Reject carts that cannot be priced at all.

  Raises:
      CartValidationError: on duplicate codes, negative quantities or prices
  """
  errors = []
  seen = set()
  for item in items:
    if item.product_code in seen:
      errors.append(f"{item.product_code}: duplicate product code in cart")
    seen.add(item.product_code)
    if item.quantity < 0:
      errors.append(f"{item.product_code}: quantity cannot be negative")
    if item.base_price < 0:
      errors.append(f"{item.product_code}: base price cannot be negative")
  if errors:
    raise CartValidationError(errors)


class PricingEngine:
  """Prices carts against the ladders held by an injected LadderCache."""

  def __init__(self, cache: LadderCache):
    self.cache = cache

  def price(self, items: Sequence[CartItem]) -> PricingResult:
    """Price a cart.

    Zero-quantity items are priced (line total 0) but do not count toward
    the standard ladder's total quantity.

    Raises:
        CartValidationError: if the cart is malformed
        PricingConfigurationError: if ladders cannot be loaded
    """
    if not items:
      return PricingResult()

    check_cart(items)
    config = self.cache.get()

    validation_errors = self._check_max_quantities(items, config)

    standard_total = sum(
      item.quantity
      for item in items
      if item.resolved_tier == PricingTierName.STANDARD and item.quantity > 0
    )
    standard_price = config.standard.lookup(standard_total).value
    standard_note = (
      f"Tier pricing: {standard_total} total units @ £{standard_price:.2f}"
    )

    priced: List[PricedLineItem] = []
    for item in items:
      tier = item.resolved_tier
      if tier == PricingTierName.STANDARD:
        priced.append(
          PricedLineItem.from_cart_item(item, quantize_money(standard_price), standard_note)
        )
      elif tier == PricingTierName.PREMIUM:
        priced.append(self._price_premium(item, config))
      else:
        priced.append(PricedLineItem.from_cart_item(item, quantize_money(item.base_price)))

    subtotal = sum((line.line_total for line in priced), Decimal("0.00"))

    logger.debug(
      f"Priced {len(priced)} items: standard total {standard_total}, "
      f"subtotal £{subtotal:.2f}, {len(validation_errors)} validation errors"
    )
    return PricingResult(
      items=priced, subtotal=subtotal, validation_errors=validation_errors
    )

  @staticmethod
  def _check_max_quantities(
    items: Sequence[CartItem], config: LadderConfiguration
  ) -> List[str]:
    errors = []
    for item in items:
      max_qty = config.max_quantity_for(item.resolved_tier)
      if max_qty is not None and item.quantity > max_qty:
        errors.append(
          f"{item.product_code}: Maximum {max_qty} units per SKU (you have {item.quantity})"
        )
    return errors

  @staticmethod
  def _price_premium(item: CartItem, config: LadderConfiguration) -> PricedLineItem:
    discount = config.premium.lookup(item.quantity).value
    unit_price = quantize_money(item.base_price * (1 - discount / Decimal(100)))
    note = f"{discount:.0f}% volume discount" if discount > 0 else None
    return PricedLineItem.from_cart_item(item, unit_price, note)
