"""Tests for the tiered pricing engine."""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from finishops.exceptions import CartValidationError, PricingConfigurationError
from finishops.operations.pricing import CartItem, LadderCache, PricingEngine


def standard(code, quantity, base="33.00"):
  return CartItem(
    product_code=code, quantity=quantity, base_price=Decimal(base), pricing_tier="standard"
  )


def premium(code, quantity, base):
  return CartItem(
    product_code=code, quantity=quantity, base_price=Decimal(base), pricing_tier="premium"
  )


@pytest.fixture
def engine(ladder_cache):
  return PricingEngine(ladder_cache)


@pytest.mark.unit
class TestStandardPricing:
  """Standard items share one unit price set by their combined quantity."""

  def test_small_mixed_cart_uses_first_band(self, engine):
    result = engine.price([standard("SPACER-01", 2), standard("BLADE-SEAL-01", 1)])

    assert [line.unit_price for line in result.items] == [Decimal("33.00")] * 2
    assert result.subtotal == Decimal("99.00")
    assert result.validation_errors == []
    assert result.is_valid

  def test_large_cart_clamps_to_last_band_and_reports_max_quantity(self, engine):
    result = engine.price([standard("RUBBER-01", 20), standard("PLASTIC-01", 20)])

    assert all(line.unit_price == Decimal("20.00") for line in result.items)
    assert result.subtotal == Decimal("800.00")
    assert len(result.validation_errors) == 2
    assert "RUBBER-01" in result.validation_errors[0]
    assert "Maximum 15 units" in result.validation_errors[0]
    assert not result.is_valid

  def test_band_boundary_belongs_to_higher_band(self, engine):
    result = engine.price([standard("SPACER-01", 4)])

    assert result.items[0].unit_price == Decimal("29.00")

  def test_zero_quantity_is_priced_but_not_counted(self, engine):
    result = engine.price([standard("SPACER-01", 3), standard("GRIPPER-01", 0)])

    assert [line.discount_applied for line in result.items] == [
      "Tier pricing: 3 total units @ £33.00"
    ] * 2
    assert result.items[1].unit_price == Decimal("33.00")
    assert result.items[1].line_total == Decimal("0.00")
    assert result.subtotal == Decimal("99.00")

  def test_zero_quantity_line_takes_band_of_other_lines(self, engine):
    result = engine.price([standard("GRIPPER-01", 0), standard("SPACER-01", 4)])

    assert result.items[0].unit_price == Decimal("29.00")
    assert result.items[0].line_total == Decimal("0.00")
    assert result.items[0].discount_applied == "Tier pricing: 4 total units @ £29.00"

  def test_unit_price_never_rises_with_total_quantity(self, engine):
    codes = ["SPACER-01", "RUBBER-01", "PLASTIC-01", "BLADE-SEAL-01"]
    prices = []
    for total in range(61):
      # spread across SKUs so no line passes the 15 unit maximum
      quantities = [min(15, max(0, total - 15 * index)) for index in range(len(codes))]
      result = engine.price([standard(code, qty) for code, qty in zip(codes, quantities)])
      assert result.is_valid
      prices.append(result.items[0].unit_price)

    assert all(later <= earlier for earlier, later in zip(prices, prices[1:]))
    assert prices[0] == Decimal("33.00")
    assert prices[-1] == Decimal("20.00")

  def test_discount_note_names_total_units(self, engine):
    result = engine.price([standard("SPACER-01", 5), standard("BLADE-SEAL-01", 5)])

    assert result.items[0].discount_applied == "Tier pricing: 10 total units @ £25.00"

  def test_category_resolves_tier_when_not_explicit(self, engine):
    item = CartItem(
      product_code="SPACER-01", quantity=2, base_price=Decimal("40.00"), category="Spacer"
    )

    result = engine.price([item])

    assert result.items[0].pricing_tier == "standard"
    assert result.items[0].unit_price == Decimal("33.00")


@pytest.mark.unit
class TestPremiumPricing:
  """Premium items get a percentage off their own base by their own quantity."""

  def test_cutting_knife_top_band(self, engine):
    result = engine.price([premium("CK-001", 10, "59.00")])

    line = result.items[0]
    assert line.unit_price == Decimal("44.25")
    assert line.line_total == Decimal("442.50")
    assert line.discount_applied == "25% volume discount"
    assert result.is_valid

  def test_micro_perforation_blade_middle_band(self, engine):
    result = engine.price([premium("MPB-001", 5, "79.00")])

    line = result.items[0]
    assert line.unit_price == Decimal("67.15")
    assert line.line_total == Decimal("335.75")

  def test_first_band_is_list_price(self, engine):
    result = engine.price([premium("CB-001", 2, "45.50")])

    assert result.items[0].unit_price == Decimal("45.50")
    assert result.items[0].discount_applied is None

  def test_premium_quantities_are_independent(self, engine):
    result = engine.price([premium("CK-001", 10, "59.00"), premium("CK-002", 1, "59.00")])

    assert result.items[1].unit_price == Decimal("59.00")

  def test_over_max_is_reported(self, engine):
    result = engine.price([premium("CK-001", 11, "59.00")])

    assert result.validation_errors == [
      "CK-001: Maximum 10 units per SKU (you have 11)"
    ]


@pytest.mark.unit
class TestMixedCarts:
  def test_untiered_items_sell_at_base_price(self, engine):
    item = CartItem(product_code="MISC-01", quantity=3, base_price=Decimal("12.99"))

    result = engine.price([item, standard("SPACER-01", 1)])

    assert result.items[0].unit_price == Decimal("12.99")
    assert result.items[0].pricing_tier is None
    assert result.subtotal == Decimal("71.97")

  def test_premium_items_do_not_move_standard_band(self, engine):
    result = engine.price([standard("SPACER-01", 2), premium("CK-001", 10, "59.00")])

    assert result.items[0].unit_price == Decimal("33.00")
    assert result.subtotal == Decimal("508.50")

  def test_empty_cart(self, engine):
    result = engine.price([])

    assert result.items == []
    assert result.subtotal == Decimal("0.00")

  def test_to_dict_serializes_money_as_strings(self, engine):
    data = engine.price([premium("CK-001", 10, "59.00")]).to_dict()

    assert data["subtotal"] == "442.50"
    assert data["items"][0]["unit_price"] == "44.25"
    assert data["is_valid"] is True

  def test_pricing_same_cart_twice_is_identical(self, engine):
    cart = [
      standard("SPACER-01", 6),
      standard("GRIPPER-01", 0),
      premium("CK-001", 7, "59.00"),
      CartItem(product_code="MISC-01", quantity=2, base_price=Decimal("12.99")),
    ]

    first = engine.price(cart).to_dict()
    second = engine.price(cart).to_dict()

    assert first == second
    assert first["items"][0]["discount_applied"] == "Tier pricing: 6 total units @ £29.00"


@pytest.mark.unit
class TestMalformedCarts:
  def test_duplicate_codes_rejected(self, engine):
    with pytest.raises(CartValidationError) as exc_info:
      engine.price([standard("SPACER-01", 1), standard("SPACER-01", 2)])

    assert "duplicate" in exc_info.value.message

  def test_negative_quantity_rejected(self, engine):
    with pytest.raises(CartValidationError):
      engine.price([standard("SPACER-01", -1)])

  def test_negative_base_price_rejected(self, engine):
    with pytest.raises(CartValidationError):
      engine.price([premium("CK-001", 1, "-5.00")])

  def test_ladder_failure_propagates(self):
    source = Mock()
    source.name = "database"
    source.load.side_effect = PricingConfigurationError("database", "connection refused")
    engine = PricingEngine(LadderCache(source))

    with pytest.raises(PricingConfigurationError):
      engine.price([standard("SPACER-01", 1)])
