"""Pricing API models."""

from decimal import Decimal

from pydantic import BaseModel, Field

from ...operations.pricing import CartItem


class CartItemRequest(BaseModel):
  """One cart line to price."""

  product_code: str = Field(..., min_length=1, description="Product code, unique in the cart")
  quantity: int = Field(..., description="Units ordered")
  base_price: Decimal = Field(..., description="List price per unit in pounds")
  pricing_tier: str | None = Field(
    None, description="Pricing tier ('standard' or 'premium'); overrides category"
  )
  category: str | None = Field(None, description="Catalogue category, mapped to a tier")
  description: str | None = Field(None, description="Line description")
  product_type: str | None = Field(None, description="Product type ('tool' or 'consumable')")

  def to_cart_item(self) -> CartItem:
    return CartItem(
      product_code=self.product_code,
      quantity=self.quantity,
      base_price=self.base_price,
      pricing_tier=self.pricing_tier,
      category=self.category,
      description=self.description,
      product_type=self.product_type,
    )


class PriceCartRequest(BaseModel):
  """Cart to price."""

  items: list[CartItemRequest] = Field(default_factory=list, description="Cart lines")


class PricedItem(BaseModel):
  product_code: str
  quantity: int
  pricing_tier: str | None = None
  base_price: Decimal
  unit_price: Decimal
  line_total: Decimal
  discount_applied: str | None = None


class PriceCartResponse(BaseModel):
  """Priced cart."""

  items: list[PricedItem] = Field(..., description="Priced lines in cart order")
  subtotal: Decimal = Field(..., description="Sum of line totals in pounds")
  validation_errors: list[str] = Field(
    ..., description="Max-quantity violations; pricing still applies"
  )
  is_valid: bool = Field(..., description="True when there are no validation errors")


class CategoryPricingResponse(BaseModel):
  """Pricing ladder shown for a catalogue category."""

  category: str
  pricing_tier: str | None = Field(None, description="Tier the category maps to")
  max_quantity: int | None = Field(None, description="Maximum units per SKU")
  description: str = Field(..., description="Human readable pricing summary")
  tiers: list[str] = Field(..., description="Ladder display rows")


class RefreshPricingResponse(BaseModel):
  """Result of a forced ladder reload."""

  source: str = Field(..., description="Ladder source that was loaded")
  loaded_at: str = Field(..., description="Load time (ISO format)")
  standard_tiers: int
  premium_tiers: int
