"""Money helpers.

Prices are Decimal pounds inside the pricing engine and integer pence
everywhere money is persisted or sent to the payment provider.
"""

from decimal import ROUND_HALF_UP, Decimal

PENNY = Decimal("0.01")


def quantize_money(amount: Decimal) -> Decimal:
  """Round to whole pennies, half up."""
  return amount.quantize(PENNY, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | str) -> int:
  """Convert pounds to pence, rounding half up."""
  return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_cents: int | None) -> Decimal:
  """Convert pence to pounds."""
  return (Decimal(amount_cents or 0) / 100).quantize(PENNY)
