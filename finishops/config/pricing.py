"""
Static pricing configuration.

Ladder tables used when PRICING_SOURCE=static, and the catalogue category
lists that decide which pricing tier a product falls under when the cart does
not state one explicitly.
"""

from decimal import Decimal


class PricingTierName:
  """Pricing tier identifiers as stored on products and cart items."""

  STANDARD = "standard"
  PREMIUM = "premium"


class ProductType:
  """Product types relevant to commission rates."""

  TOOL = "tool"
  CONSUMABLE = "consumable"
  OTHER = "other"


# Standard ladder: flat unit price by total quantity of all standard items.
# (min_quantity, max_quantity, unit_price)
STANDARD_LADDER = [
  (1, 3, Decimal("33.00")),
  (4, 7, Decimal("29.00")),
  (8, 9, Decimal("27.00")),
  (10, 19, Decimal("25.00")),
  (20, 24, Decimal("23.00")),
  (25, 29, Decimal("22.00")),
  (30, 34, Decimal("21.00")),
  (35, None, Decimal("20.00")),
]

# Premium ladder: percentage off the SKU's own base price by its own quantity.
# (min_quantity, max_quantity, discount_percent)
PREMIUM_LADDER = [
  (1, 2, Decimal("0")),
  (3, 4, Decimal("7")),
  (5, 9, Decimal("15")),
  (10, None, Decimal("25")),
]

# Defaults applied when the pricing_rules table has no row for a tier
DEFAULT_MAX_QTY_STANDARD = 15
DEFAULT_MAX_QTY_PREMIUM = 10

STANDARD_CATEGORIES = [
  "Blade Seal",
  "Female Receiver Ring",
  "Gripper Band",
  "Nylon Sleeve",
  "Plastic Creasing Band",
  "Rubber Creasing Band",
  "Section Scoring Band",
  "Spacer",
  "Waste-Stripper",
]

PREMIUM_CATEGORIES = [
  "Cutting Boss",
  "Cutting Knife",
  "Micro-Perforation Blade",
]

CATEGORY_DESCRIPTIONS = {
  PricingTierName.STANDARD: (
    "Tiered group pricing - lower prices for higher total quantities "
    "across all consumables"
  ),
  PricingTierName.PREMIUM: "Volume discount on each SKU's own quantity",
  None: "Standard pricing",
}
